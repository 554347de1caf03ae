"""
Pydantic schemas for the Storyloom story service
"""

from .snapshot import SNAPSHOT_SCHEMA, canonical_json, snapshot_checksum
from .story import (
    START_FLAG,
    ChoiceCreateRequest,
    ChoiceData,
    ChoiceUpdateRequest,
    Difficulty,
    DraftState,
    EditingVersion,
    FreshDraft,
    NodeCreateRequest,
    NodeData,
    NodeUpdateRequest,
    PublishValidation,
    PublishVersionRequest,
    StoryCreateRequest,
    StoryData,
    StoryStatus,
    StoryUpdateRequest,
    StoryVersionCreate,
    StoryVersionData,
    StoryVersionSummary,
    ValidationResult,
)
from .validation import validate_json_schema, validate_snapshot

__all__ = [
    # Story graph models
    "START_FLAG",
    "StoryStatus",
    "Difficulty",
    "DraftState",
    "FreshDraft",
    "EditingVersion",
    "StoryData",
    "NodeData",
    "ChoiceData",
    "StoryVersionCreate",
    "StoryVersionData",
    "StoryVersionSummary",
    # Validation results
    "ValidationResult",
    "PublishValidation",
    # Requests
    "StoryCreateRequest",
    "StoryUpdateRequest",
    "NodeCreateRequest",
    "NodeUpdateRequest",
    "ChoiceCreateRequest",
    "ChoiceUpdateRequest",
    "PublishVersionRequest",
    # Snapshot helpers
    "SNAPSHOT_SCHEMA",
    "canonical_json",
    "snapshot_checksum",
    "validate_json_schema",
    "validate_snapshot",
]
