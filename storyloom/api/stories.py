"""
Story management API endpoints.

This module handles story CRUD, structural validation, publishing and the
published version history. Engine errors are translated to HTTP responses
by the application's exception handler.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from storyloom.api.deps import get_database, get_orchestrator
from storyloom.db.manager import DatabaseManager
from storyloom.engine.publisher import PublishOrchestrator
from storyloom.schemas.story import (
    PublishValidation,
    PublishVersionRequest,
    StoryCreateRequest,
    StoryData,
    StoryStatus,
    StoryUpdateRequest,
    StoryVersionData,
    ValidationResult,
)
from storyloom.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/")
def list_stories(
    status: Optional[StoryStatus] = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=500),
    db: DatabaseManager = Depends(get_database),
) -> Dict[str, Any]:
    """List stories, most recently updated first"""
    stories = db.list_stories(limit=limit, status=status)
    logger.debug(f"Listed {len(stories)} stories (status={status})")
    return {"stories": [story.model_dump(mode="json") for story in stories]}


@router.post("/", response_model=StoryData, status_code=201)
def create_story(
    request: StoryCreateRequest, db: DatabaseManager = Depends(get_database)
):
    """Create a new draft story"""
    return db.create_story(request)


@router.get("/{story_id}", response_model=StoryData)
def get_story(story_id: str, db: DatabaseManager = Depends(get_database)):
    """Get a story by ID"""
    return db.get_story(story_id)


@router.put("/{story_id}", response_model=StoryData)
def update_story(
    story_id: str,
    request: StoryUpdateRequest,
    orchestrator: PublishOrchestrator = Depends(get_orchestrator),
):
    """
    Update a story.

    Editing the narrative content of a published story moves it back to
    draft as the next version; metadata-only edits do not.
    """
    return orchestrator.update_story(story_id, request)


@router.delete("/{story_id}")
def delete_story(story_id: str, db: DatabaseManager = Depends(get_database)):
    """Delete a story that has never been published"""
    db.delete_story(story_id)
    return {"id": story_id, "deleted": True}


@router.get("/{story_id}/structure", response_model=ValidationResult)
def validate_story_structure(
    story_id: str, orchestrator: PublishOrchestrator = Depends(get_orchestrator)
):
    """Report the structural health of the story graph"""
    return orchestrator.validate_story_structure(story_id)


@router.get("/{story_id}/validate", response_model=PublishValidation)
def validate_for_publishing(
    story_id: str, orchestrator: PublishOrchestrator = Depends(get_orchestrator)
):
    """Check whether the story can be published, listing every failed check"""
    return orchestrator.validate_for_publishing(story_id)


@router.post("/{story_id}/publish", response_model=StoryData)
def publish_story(
    story_id: str, orchestrator: PublishOrchestrator = Depends(get_orchestrator)
):
    """Publish a draft story as its first version"""
    logger.info("=" * 60)
    logger.info(f"PUBLISH REQUEST: {story_id}")
    return orchestrator.publish(story_id)


@router.post("/{story_id}/publish-version", response_model=StoryData)
def publish_new_version(
    story_id: str,
    request: Optional[PublishVersionRequest] = Body(None),
    orchestrator: PublishOrchestrator = Depends(get_orchestrator),
):
    """Publish the pending edit of a published story as a new version"""
    logger.info("=" * 60)
    logger.info(f"NEW VERSION PUBLISH REQUEST: {story_id}")
    notes = request.notes if request else None
    return orchestrator.publish_new_version(story_id, notes=notes)


@router.post("/{story_id}/archive", response_model=StoryData)
def archive_story(
    story_id: str, orchestrator: PublishOrchestrator = Depends(get_orchestrator)
):
    """Archive a story"""
    return orchestrator.archive_story(story_id)


@router.get("/{story_id}/versions")
def list_story_versions(
    story_id: str, orchestrator: PublishOrchestrator = Depends(get_orchestrator)
) -> Dict[str, Any]:
    """List published versions, newest first"""
    versions = orchestrator.list_story_versions(story_id)
    return {
        "results": len(versions),
        "versions": [version.model_dump(mode="json") for version in versions],
    }


@router.get("/{story_id}/versions/{version_number}", response_model=StoryVersionData)
def get_story_version(
    story_id: str,
    version_number: int,
    orchestrator: PublishOrchestrator = Depends(get_orchestrator),
):
    """Get one published version including its snapshot"""
    return orchestrator.get_story_version_record(story_id, version_number)
