"""
Story graph schema definitions.

Stories own nodes, nodes own their outgoing choices, and every publish
freezes the whole tree into a StoryVersion snapshot.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field
from typing_extensions import Annotated

START_FLAG = "isStart"


class StoryStatus(str, Enum):
    """Lifecycle status of a story"""

    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


class Difficulty(str, Enum):
    """Reader-facing difficulty rating"""

    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"


class FreshDraft(BaseModel):
    """Draft that has never been published, or a published story at rest"""

    kind: Literal["fresh"] = "fresh"


class EditingVersion(BaseModel):
    """Published story reopened for editing; the next publish gets version_number"""

    kind: Literal["editing"] = "editing"
    version_number: int = Field(..., ge=1)


DraftState = Annotated[Union[FreshDraft, EditingVersion], Field(discriminator="kind")]


class ChoiceData(BaseModel):
    """A directed edge between two nodes of the same story"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    source_node_id: str
    target_node_id: str
    text: str
    order: int = 0
    conditions: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class NodeData(BaseModel):
    """A unit of story content together with its outgoing choices"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    story_id: str
    title: str
    content: str = ""
    is_ending: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)
    position_x: int = 0
    position_y: int = 0
    choices: List[ChoiceData] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_start(self) -> bool:
        return self.metadata.get(START_FLAG) is True


class StoryData(BaseModel):
    """Mutable story record"""

    id: str
    author_id: Optional[str] = None
    title: str
    description: str = ""
    cover_image_url: Optional[str] = None
    genres: List[str] = Field(default_factory=list)
    difficulty: Difficulty = Difficulty.MEDIUM
    status: StoryStatus = StoryStatus.DRAFT
    metadata: Dict[str, Any] = Field(default_factory=dict)
    current_version: Optional[int] = None
    draft_state: DraftState = Field(default_factory=FreshDraft)
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field  # type: ignore[misc]
    @property
    def is_editing_new_version(self) -> bool:
        return isinstance(self.draft_state, EditingVersion)

    @computed_field  # type: ignore[misc]
    @property
    def draft_version(self) -> Optional[int]:
        if isinstance(self.draft_state, EditingVersion):
            return self.draft_state.version_number
        return None


class StoryVersionData(BaseModel):
    """Immutable published snapshot of a story"""

    id: str
    story_id: str
    version_number: int
    snapshot: Dict[str, Any]
    snapshot_checksum: str
    published_at: datetime
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class StoryVersionCreate(BaseModel):
    """Data for appending a version to the ledger"""

    story_id: str
    version_number: int = Field(..., ge=1)
    snapshot: Dict[str, Any]
    published_at: datetime
    notes: Optional[str] = None


class StoryVersionSummary(BaseModel):
    """Version listing entry without the snapshot payload"""

    id: str
    story_id: str
    version_number: int
    snapshot_checksum: str
    published_at: datetime
    notes: Optional[str] = None


class ValidationResult(BaseModel):
    """Structural health of a story graph"""

    is_valid: bool
    has_start_node: bool
    has_ending_nodes: bool
    orphaned_node_ids: List[str] = Field(default_factory=list)
    unreachable_node_ids: List[str] = Field(default_factory=list)
    dead_end_node_ids: List[str] = Field(default_factory=list)


class PublishValidation(BaseModel):
    """Outcome of the pre-publish check"""

    is_valid: bool
    violations: List[str] = Field(default_factory=list)
    message: Optional[str] = None
    validation_result: ValidationResult


# ==================== Requests ====================


class StoryCreateRequest(BaseModel):
    """Request to create a new draft story"""

    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="")
    author_id: Optional[str] = None
    cover_image_url: Optional[str] = None
    genres: List[str] = Field(default_factory=list)
    difficulty: Difficulty = Difficulty.MEDIUM
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StoryUpdateRequest(BaseModel):
    """Partial story update; omitted fields are left untouched"""

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    cover_image_url: Optional[str] = None
    genres: Optional[List[str]] = None
    difficulty: Optional[Difficulty] = None
    status: Optional[StoryStatus] = None
    metadata: Optional[Dict[str, Any]] = None


class NodeCreateRequest(BaseModel):
    """Request to add a node to a story"""

    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(default="")
    is_ending: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)
    position_x: int = 0
    position_y: int = 0


class NodeUpdateRequest(BaseModel):
    """Partial node update"""

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = None
    is_ending: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None
    position_x: Optional[int] = None
    position_y: Optional[int] = None


class ChoiceCreateRequest(BaseModel):
    """Request to add a choice leaving a node"""

    target_node_id: str
    text: str = Field(..., min_length=1)
    order: Optional[int] = Field(None, ge=0)
    conditions: Dict[str, Any] = Field(default_factory=dict)


class ChoiceUpdateRequest(BaseModel):
    """Partial choice update"""

    target_node_id: Optional[str] = None
    text: Optional[str] = Field(None, min_length=1)
    order: Optional[int] = Field(None, ge=0)
    conditions: Optional[Dict[str, Any]] = None


class PublishVersionRequest(BaseModel):
    """Request to publish the pending draft as a new version"""

    notes: Optional[str] = Field(None, max_length=2000)
