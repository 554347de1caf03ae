"""
Database manager for Storyloom.

This module provides a high-level interface for database operations on
stories and their node/choice graphs, with transactional session handling.
Published versions live in the ledger managed by ``VersionStore``.
"""

import os
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import create_engine, desc, event, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession
from sqlalchemy.orm import selectinload, sessionmaker

from storyloom.db.schema import Base, Choice, Node, Story, StoryVersion
from storyloom.engine.errors import ConflictError, NotFoundError, PersistenceError
from storyloom.engine.state_machine import StoryStateMachine
from storyloom.schemas.story import (
    START_FLAG,
    ChoiceCreateRequest,
    ChoiceData,
    ChoiceUpdateRequest,
    NodeCreateRequest,
    NodeData,
    NodeUpdateRequest,
    StoryCreateRequest,
    StoryData,
    StoryStatus,
)
from storyloom.utils.logger import get_logger

logger = get_logger(__name__)


def _configure_sqlite_connection(dbapi_connection, connection_record):
    # Hand transaction control to the "begin" listener below
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _begin_immediate(connection):
    """Take SQLite's write lock at the start of every transaction"""
    connection.exec_driver_sql("BEGIN IMMEDIATE")


class DatabaseManager:
    """
    Manages database operations for stories, nodes and choices.

    Attributes:
        db_path: Path to the SQLite database file
        engine: SQLAlchemy engine for database connections
        SessionLocal: Factory for creating database sessions
        enforce_single_start_node: Reject a second start-flagged node per story
    """

    def __init__(
        self,
        db_path: str = "data/storyloom.db",
        enforce_single_start_node: bool = True,
    ):
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file (created if doesn't exist)
            enforce_single_start_node: Reject node writes that add a second start node
        """
        self.db_path = db_path
        self.enforce_single_start_node = enforce_single_start_node
        self.state_machine = StoryStateMachine()

        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        self.engine = create_engine(
            f"sqlite:///{db_path}",
            echo=False,
            connect_args={"check_same_thread": False},
        )
        event.listen(self.engine, "connect", _configure_sqlite_connection)
        event.listen(self.engine, "begin", _begin_immediate)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

        logger.info(f"Database initialized at {db_path}")

    @contextmanager
    def session_scope(self) -> Iterator[DBSession]:
        """
        Provide a transactional scope around a series of operations.

        The transaction holds SQLite's write lock from its first statement,
        so scopes that touch the same database run one after another.

        Commits on success. On any failure the transaction is rolled back;
        storage errors are re-raised as PersistenceError, engine errors
        propagate unchanged.
        """
        db: DBSession = self.SessionLocal()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database transaction failed: {e}")
            raise PersistenceError(f"Database operation failed: {type(e).__name__}") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def dispose(self) -> None:
        self.engine.dispose()

    # ==================== Lookups ====================

    @staticmethod
    def load_story(db: DBSession, story_id: str) -> Story:
        story = db.query(Story).filter(Story.id == story_id).first()
        if story is None:
            raise NotFoundError(f"Story {story_id} not found")
        return story

    @staticmethod
    def load_node(db: DBSession, node_id: str) -> Node:
        node = db.query(Node).filter(Node.id == node_id).first()
        if node is None:
            raise NotFoundError(f"Node {node_id} not found")
        return node

    @staticmethod
    def load_choice(db: DBSession, choice_id: str) -> Choice:
        choice = db.query(Choice).filter(Choice.id == choice_id).first()
        if choice is None:
            raise NotFoundError(f"Choice {choice_id} not found")
        return choice

    @staticmethod
    def load_nodes_with_choices(db: DBSession, story_id: str) -> List[NodeData]:
        nodes = (
            db.query(Node)
            .options(selectinload(Node.outgoing_choices))
            .filter(Node.story_id == story_id)
            .order_by(Node.created_at, Node.id)
            .all()
        )
        return [node.to_data() for node in nodes]

    def _mark_story_edited(self, story: Story) -> None:
        """Graph edits reopen a published story as the draft of its next version"""
        state = story.to_state()
        new_state = self.state_machine.begin_new_version(state)
        if new_state != state:
            story.apply_state(new_state)
            logger.info(
                f"Published story moved to draft for editing: {story.id} "
                f"(Draft version: {story.draft_version})"
            )

    # ==================== Story Operations ====================

    def create_story(self, request: StoryCreateRequest) -> StoryData:
        """
        Create a new draft story.

        Args:
            request: Story fields

        Returns:
            The created story
        """
        with self.session_scope() as db:
            story = Story(
                author_id=request.author_id,
                title=request.title,
                description=request.description,
                cover_image_url=request.cover_image_url,
                genres=list(request.genres),
                difficulty=request.difficulty.value,
                meta=dict(request.metadata),
                status=StoryStatus.DRAFT.value,
            )
            db.add(story)
            db.flush()
            result = story.to_data()

        logger.info(f"Story created: {result.id}")
        return result

    def get_story(self, story_id: str) -> StoryData:
        with self.session_scope() as db:
            return self.load_story(db, story_id).to_data()

    def list_stories(
        self, limit: int = 50, status: Optional[StoryStatus] = None
    ) -> List[StoryData]:
        """
        List stories with optional filtering.

        Args:
            limit: Maximum number of stories to return
            status: Optional status filter

        Returns:
            Stories, most recently updated first
        """
        with self.session_scope() as db:
            query = db.query(Story)
            if status:
                query = query.filter(Story.status == status.value)
            stories = query.order_by(desc(Story.updated_at)).limit(limit).all()
            return [story.to_data() for story in stories]

    def delete_story(self, story_id: str) -> None:
        """
        Delete a story and its graph.

        Raises:
            ConflictError: If the story has published versions; the ledger is
                permanent, archive the story instead
        """
        with self.session_scope() as db:
            story = self.load_story(db, story_id)
            version_count = (
                db.query(func.count(StoryVersion.id))
                .filter(StoryVersion.story_id == story_id)
                .scalar()
            )
            if version_count:
                raise ConflictError(
                    "Stories with published versions cannot be deleted; archive instead"
                )
            db.delete(story)

        logger.info(f"Story deleted: {story_id}")

    # ==================== Node Operations ====================

    def list_nodes_with_choices(self, story_id: str) -> List[NodeData]:
        """
        Return every node of a story, each carrying its outgoing choices.

        Raises:
            NotFoundError: If the story does not exist
        """
        with self.session_scope() as db:
            self.load_story(db, story_id)
            return self.load_nodes_with_choices(db, story_id)

    def get_node(self, node_id: str) -> NodeData:
        with self.session_scope() as db:
            return self.load_node(db, node_id).to_data()

    def _check_single_start(
        self, db: DBSession, story_id: str, exclude_node_id: Optional[str] = None
    ) -> None:
        if not self.enforce_single_start_node:
            return
        for node in db.query(Node).filter(Node.story_id == story_id).all():
            if node.id != exclude_node_id and (node.meta or {}).get(START_FLAG) is True:
                raise ConflictError(f"Story already has a start node: {node.id}")

    def create_node(self, story_id: str, request: NodeCreateRequest) -> NodeData:
        """
        Add a node to a story.

        Raises:
            NotFoundError: If the story does not exist
            ConflictError: If the story is archived, or the node would be a
                second start node
        """
        with self.session_scope() as db:
            story = self.load_story(db, story_id)
            self._mark_story_edited(story)
            if request.metadata.get(START_FLAG) is True:
                self._check_single_start(db, story_id)

            node = Node(
                story_id=story_id,
                title=request.title,
                content=request.content,
                is_ending=request.is_ending,
                meta=dict(request.metadata),
                position_x=request.position_x,
                position_y=request.position_y,
            )
            db.add(node)
            db.flush()
            result = node.to_data()

        logger.info(f"Node created: {result.id} (Story: {story_id})")
        return result

    def update_node(self, node_id: str, request: NodeUpdateRequest) -> NodeData:
        """Apply a partial update to a node"""
        changes = request.model_dump(exclude_unset=True)
        with self.session_scope() as db:
            node = self.load_node(db, node_id)
            self._mark_story_edited(node.story)

            metadata = changes.pop("metadata", None)
            if metadata is not None:
                if metadata.get(START_FLAG) is True:
                    self._check_single_start(db, node.story_id, exclude_node_id=node.id)
                node.meta = dict(metadata)
            for key, value in changes.items():
                if value is not None:
                    setattr(node, key, value)

            db.flush()
            result = node.to_data()

        logger.info(f"Node updated: {node_id}")
        return result

    def delete_node(self, node_id: str) -> None:
        """Delete a node together with every choice leading to or from it"""
        with self.session_scope() as db:
            node = self.load_node(db, node_id)
            self._mark_story_edited(node.story)
            removed = (
                db.query(Choice)
                .filter(Choice.target_node_id == node_id)
                .delete(synchronize_session="fetch")
            )
            db.delete(node)

        logger.info(f"Node deleted: {node_id} (removed {removed} incoming choices)")

    # ==================== Choice Operations ====================

    def list_choices(self, source_node_id: str) -> List[ChoiceData]:
        """Choices leaving a node, in display order"""
        with self.session_scope() as db:
            return [choice.to_data() for choice in self.load_node(db, source_node_id).outgoing_choices]

    def get_choice(self, choice_id: str) -> ChoiceData:
        with self.session_scope() as db:
            return self.load_choice(db, choice_id).to_data()

    def _load_target(self, db: DBSession, source: Node, target_node_id: str) -> Node:
        target = self.load_node(db, target_node_id)
        if target.story_id != source.story_id:
            raise ConflictError(
                "Choice source and target nodes must belong to the same story"
            )
        return target

    def create_choice(self, source_node_id: str, request: ChoiceCreateRequest) -> ChoiceData:
        """
        Add a choice leaving ``source_node_id``.

        When ``order`` is omitted the choice goes after the existing ones.

        Raises:
            NotFoundError: If either node does not exist
            ConflictError: If the nodes belong to different stories
        """
        with self.session_scope() as db:
            source = self.load_node(db, source_node_id)
            self._load_target(db, source, request.target_node_id)
            self._mark_story_edited(source.story)

            order = request.order
            if order is None:
                highest = (
                    db.query(func.max(Choice.order))
                    .filter(Choice.source_node_id == source_node_id)
                    .scalar()
                )
                order = highest + 1 if highest is not None else 0

            choice = Choice(
                source_node_id=source_node_id,
                target_node_id=request.target_node_id,
                text=request.text,
                order=order,
                conditions=dict(request.conditions),
            )
            db.add(choice)
            db.flush()
            result = choice.to_data()

        logger.info(f"Choice created: {result.id}")
        return result

    def update_choice(self, choice_id: str, request: ChoiceUpdateRequest) -> ChoiceData:
        """Apply a partial update to a choice"""
        changes = request.model_dump(exclude_unset=True)
        with self.session_scope() as db:
            choice = self.load_choice(db, choice_id)
            source = choice.source_node
            if changes.get("target_node_id") is not None:
                self._load_target(db, source, changes["target_node_id"])
            self._mark_story_edited(source.story)

            for key, value in changes.items():
                if value is not None:
                    setattr(choice, key, value)

            db.flush()
            result = choice.to_data()

        logger.info(f"Choice updated: {choice_id}")
        return result

    def delete_choice(self, choice_id: str) -> None:
        with self.session_scope() as db:
            choice = self.load_choice(db, choice_id)
            self._mark_story_edited(choice.source_node.story)
            db.delete(choice)

        logger.info(f"Choice deleted: {choice_id}")
