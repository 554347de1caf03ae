"""
Database schema definitions using SQLAlchemy.

This module defines the tables for stories, their node/choice graphs and
the append-only ledger of published story versions.
"""

# mypy: ignore-errors

import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from storyloom.engine.state_machine import StoryState
from storyloom.schemas.story import (
    ChoiceData,
    EditingVersion,
    FreshDraft,
    NodeData,
    StoryData,
    StoryStatus,
    StoryVersionData,
    StoryVersionSummary,
)

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Story(Base):
    """
    Story table.

    Attributes:
        id: Unique story identifier (UUID)
        status: DRAFT, PUBLISHED or ARCHIVED
        meta: Free-form extension map (column "metadata")
        current_version: Last published version number
        draft_version: Version the pending edit will publish as; NULL when
            the story is not editing a new version
    """

    __tablename__ = "stories"

    id = Column(String, primary_key=True, default=new_id)
    author_id = Column(String, nullable=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    cover_image_url = Column(String, nullable=True)
    genres = Column(JSON, nullable=False, default=list)
    difficulty = Column(String, nullable=False, default="MEDIUM")
    status = Column(String, nullable=False, default=StoryStatus.DRAFT.value)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    current_version = Column(Integer, nullable=True)
    draft_version = Column(Integer, nullable=True)
    published_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    nodes = relationship(
        "Node",
        back_populates="story",
        cascade="all, delete-orphan",
        order_by=lambda: [Node.created_at, Node.id],
    )

    def to_state(self) -> StoryState:
        if self.draft_version is not None:
            draft_state = EditingVersion(version_number=self.draft_version)
        else:
            draft_state = FreshDraft()
        return StoryState(
            status=StoryStatus(self.status),
            current_version=self.current_version,
            draft_state=draft_state,
        )

    def apply_state(self, state: StoryState) -> None:
        self.status = state.status.value
        self.current_version = state.current_version
        if isinstance(state.draft_state, EditingVersion):
            self.draft_version = state.draft_state.version_number
        else:
            self.draft_version = None

    def to_data(self) -> StoryData:
        return StoryData(
            id=self.id,
            author_id=self.author_id,
            title=self.title,
            description=self.description or "",
            cover_image_url=self.cover_image_url,
            genres=list(self.genres or []),
            difficulty=self.difficulty,
            status=self.status,
            metadata=dict(self.meta or {}),
            current_version=self.current_version,
            draft_state=self.to_state().draft_state,
            published_at=self.published_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class Node(Base):
    """Node table; one unit of story content"""

    __tablename__ = "nodes"

    id = Column(String, primary_key=True, default=new_id)
    story_id = Column(
        String, ForeignKey("stories.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False, default="")
    is_ending = Column(Boolean, nullable=False, default=False)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    position_x = Column(Integer, nullable=False, default=0)
    position_y = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    story = relationship("Story", back_populates="nodes")
    outgoing_choices = relationship(
        "Choice",
        foreign_keys="Choice.source_node_id",
        back_populates="source_node",
        cascade="all, delete-orphan",
        order_by=lambda: [Choice.order, Choice.created_at],
    )

    def to_data(self) -> NodeData:
        return NodeData(
            id=self.id,
            story_id=self.story_id,
            title=self.title,
            content=self.content or "",
            is_ending=bool(self.is_ending),
            metadata=dict(self.meta or {}),
            position_x=self.position_x or 0,
            position_y=self.position_y or 0,
            choices=[choice.to_data() for choice in self.outgoing_choices],
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class Choice(Base):
    """Choice table; a directed edge between two nodes of one story"""

    __tablename__ = "choices"

    id = Column(String, primary_key=True, default=new_id)
    source_node_id = Column(
        String, ForeignKey("nodes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    target_node_id = Column(
        String, ForeignKey("nodes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    text = Column(Text, nullable=False)
    order = Column(Integer, nullable=False, default=0)
    conditions = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    source_node = relationship(
        "Node", foreign_keys=[source_node_id], back_populates="outgoing_choices"
    )
    target_node = relationship("Node", foreign_keys=[target_node_id])

    def to_data(self) -> ChoiceData:
        return ChoiceData(
            id=self.id,
            source_node_id=self.source_node_id,
            target_node_id=self.target_node_id,
            text=self.text,
            order=self.order,
            conditions=dict(self.conditions or {}),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class StoryVersion(Base):
    """
    Story version table; the write-once publication ledger.

    Attributes:
        snapshot: Canonical JSON text of the story, nodes and choices
        snapshot_checksum: SHA-256 of ``snapshot``
    """

    __tablename__ = "story_versions"
    __table_args__ = (
        UniqueConstraint(
            "story_id", "version_number", name="uq_story_versions_story_number"
        ),
    )

    id = Column(String, primary_key=True, default=new_id)
    story_id = Column(
        String, ForeignKey("stories.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    version_number = Column(Integer, nullable=False)
    snapshot = Column(Text, nullable=False)
    snapshot_checksum = Column(String(64), nullable=False)
    published_at = Column(DateTime, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def to_data(self) -> StoryVersionData:
        return StoryVersionData(
            id=self.id,
            story_id=self.story_id,
            version_number=self.version_number,
            snapshot=json.loads(self.snapshot),
            snapshot_checksum=self.snapshot_checksum,
            published_at=self.published_at,
            notes=self.notes,
            created_at=self.created_at,
        )

    def to_summary(self) -> StoryVersionSummary:
        return StoryVersionSummary(
            id=self.id,
            story_id=self.story_id,
            version_number=self.version_number,
            snapshot_checksum=self.snapshot_checksum,
            published_at=self.published_at,
            notes=self.notes,
        )
