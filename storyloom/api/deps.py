"""
Shared dependencies for the API routers.

One DatabaseManager and one PublishOrchestrator serve the whole process so
that per-story publish locks are shared between requests. Tests swap them
through ``app.dependency_overrides``.
"""

from functools import lru_cache

from storyloom.config import settings
from storyloom.db.manager import DatabaseManager
from storyloom.engine.publisher import PublishOrchestrator


@lru_cache(maxsize=1)
def get_database() -> DatabaseManager:
    return DatabaseManager(
        settings.database_path,
        enforce_single_start_node=settings.enforce_single_start_node,
    )


@lru_cache(maxsize=1)
def get_orchestrator() -> PublishOrchestrator:
    return PublishOrchestrator(
        get_database(), lock_timeout=settings.publish_lock_timeout
    )
