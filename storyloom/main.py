"""
FastAPI application for the Storyloom story service
"""

import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storyloom.api.choices import router as choices_router
from storyloom.api.deps import get_database
from storyloom.api.nodes import router as nodes_router
from storyloom.api.stories import router as stories_router
from storyloom.config import settings
from storyloom.engine.errors import StoryloomError, StoryValidationError
from storyloom.utils.logger import get_logger, setup_logging

setup_logging(
    level=settings.log_level,
    log_file=settings.log_file,
    enable_colors=True,
    include_timestamp=True,
)

logger = get_logger(__name__)

app = FastAPI(
    title="Storyloom",
    description="Author branching stories and publish them as immutable versions",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

logger.info("FastAPI application initialized")
logger.info(f"Log level: {settings.log_level}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next: Callable) -> Response:
    """Log every HTTP request with a short correlation id and its duration"""
    request_id = str(uuid.uuid4())[:8]
    start_time = time.time()
    request.state.request_id = request_id

    logger.info(
        f"[API] Request started: {request.method} {request.url.path}",
        extra={
            "component": "API",
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
        },
    )

    try:
        response = await call_next(request)
    except Exception as e:
        duration_ms = (time.time() - start_time) * 1000
        logger.error(
            f"[API] Request failed: {request.method} {request.url.path} -> ERROR "
            f"({duration_ms:.2f}ms): {str(e)}",
            extra={
                "component": "API",
                "request_id": request_id,
                "error_type": type(e).__name__,
            },
            exc_info=True,
        )
        raise

    duration_ms = (time.time() - start_time) * 1000
    logger.info(
        f"[API] Request completed: {request.method} {request.url.path} -> "
        f"{response.status_code} ({duration_ms:.2f}ms)",
        extra={
            "component": "API",
            "request_id": request_id,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
        },
    )
    return response


@app.exception_handler(StoryloomError)
async def storyloom_error_handler(request: Request, exc: StoryloomError) -> JSONResponse:
    """Render engine errors as JSON with their status code"""
    if exc.status_code >= 500:
        logger.error(f"✗ {type(exc).__name__} on {request.url.path}: {exc.message}")
    else:
        logger.warning(f"✗ {type(exc).__name__} on {request.url.path}: {exc.message}")

    body = {"detail": exc.message, "error": type(exc).__name__}
    if isinstance(exc, StoryValidationError):
        body["violations"] = exc.violations
        if exc.validation_result is not None:
            body["validation_result"] = exc.validation_result.model_dump()
    return JSONResponse(status_code=exc.status_code, content=body)


app.include_router(stories_router, prefix="/stories", tags=["stories"])
app.include_router(nodes_router, prefix="/nodes", tags=["nodes"])
app.include_router(choices_router, prefix="/choices", tags=["choices"])


@app.on_event("startup")
async def startup_event():
    """Initialize application on startup"""
    logger.info("=" * 60)
    logger.info("APPLICATION STARTUP")
    logger.info("=" * 60)

    db = app.dependency_overrides.get(get_database, get_database)()
    logger.info(f"✓ Database initialized: {db.db_path}")

    logger.info("Configuration:")
    logger.info(f"  - Database: {settings.database_path}")
    logger.info(f"  - Publish lock timeout: {settings.publish_lock_timeout}s")
    logger.info(f"  - Single start node enforced: {settings.enforce_single_start_node}")
    logger.info(f"  - Debug: {settings.debug}")
    logger.info("=" * 60)


@app.get("/")
async def root():
    """Root endpoint"""
    logger.debug("Root endpoint called")
    return {
        "message": "Storyloom",
        "version": "0.1.0",
        "status": "running",
        "log_level": settings.log_level,
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    logger.debug("Health check endpoint called")
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting server on {settings.host}:{settings.port}")
    logger.info(f"Debug mode: {settings.debug}")
    uvicorn.run(
        "storyloom.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
