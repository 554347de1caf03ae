"""
Publish orchestration for stories.

Turns an editable draft into an immutable, numbered StoryVersion: the graph
is validated, snapshotted and frozen into the ledger while the story's
status advances, all inside a single database transaction. Publishes of the
same story are serialized; the ledger's unique (story, version) constraint
backs that up across processes.
"""

import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from storyloom.db.manager import DatabaseManager
from storyloom.db.schema import Story, utcnow
from storyloom.db.versions import VersionStore
from storyloom.engine.errors import ConflictError, StoryValidationError
from storyloom.engine.graph_validator import summarize_violations, validate_nodes
from storyloom.engine.state_machine import CONTENT_FIELDS, StoryStateMachine
from storyloom.schemas.story import (
    NodeData,
    PublishValidation,
    StoryData,
    StoryUpdateRequest,
    StoryVersionCreate,
    StoryVersionData,
    StoryVersionSummary,
    ValidationResult,
)
from storyloom.utils.logger import get_logger

logger = get_logger(__name__)

VALIDATION_PREFIX = "Story structure validation failed:"

# Lifecycle bookkeeping that does not belong in a published snapshot
_SNAPSHOT_EXCLUDED_FIELDS = ("draft_state", "is_editing_new_version", "draft_version")


class _StoryLock:
    """Lock for one story plus the number of callers holding or awaiting it"""

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class PublishOrchestrator:
    """
    Validates, snapshots and publishes stories.

    Attributes:
        database: Story/node/choice persistence
        versions: Version ledger
        state_machine: Lifecycle transition rules
        lock_timeout: Seconds to wait for a concurrent lifecycle change of
            the same story before failing with ConflictError
    """

    def __init__(
        self,
        database: DatabaseManager,
        versions: Optional[VersionStore] = None,
        state_machine: Optional[StoryStateMachine] = None,
        lock_timeout: float = 5.0,
    ):
        self.database = database
        self.versions = versions or VersionStore(database)
        self.state_machine = state_machine or StoryStateMachine()
        self.lock_timeout = lock_timeout
        self._locks: Dict[str, _StoryLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _story_lock(self, story_id: str) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.get(story_id)
            if entry is None:
                entry = self._locks[story_id] = _StoryLock()
            entry.users += 1
        try:
            if not entry.lock.acquire(timeout=self.lock_timeout):
                logger.warning(f"Timed out waiting for lifecycle lock on story {story_id}")
                raise ConflictError(
                    f"Another publish of story {story_id} is in progress; retry later"
                )
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[story_id]

    # ==================== Validation ====================

    @staticmethod
    def _evaluate(nodes: List[NodeData]) -> PublishValidation:
        result = validate_nodes(nodes)
        if result.is_valid:
            return PublishValidation(is_valid=True, validation_result=result)

        violations = summarize_violations(result)
        return PublishValidation(
            is_valid=False,
            violations=violations,
            message=f"{VALIDATION_PREFIX} {' '.join(violations)}",
            validation_result=result,
        )

    def _require_publishable(self, story_id: str, nodes: List[NodeData]) -> None:
        validation = self._evaluate(nodes)
        if not validation.is_valid:
            logger.warning(f"✗ Story {story_id} failed validation: {validation.message}")
            raise StoryValidationError(
                validation.message or VALIDATION_PREFIX,
                violations=validation.violations,
                validation_result=validation.validation_result,
            )

    def validate_story_structure(self, story_id: str) -> ValidationResult:
        """
        Run the graph checks on a story's current nodes and choices.

        Raises:
            NotFoundError: If the story does not exist
        """
        nodes = self.database.list_nodes_with_choices(story_id)
        return validate_nodes(nodes)

    def validate_for_publishing(self, story_id: str) -> PublishValidation:
        """
        Check whether a story could be published right now.

        Returns:
            PublishValidation whose ``violations`` lists every failed check
        """
        nodes = self.database.list_nodes_with_choices(story_id)
        validation = self._evaluate(nodes)
        logger.debug(
            f"Validated story {story_id}: valid={validation.is_valid}, "
            f"violations={len(validation.violations)}"
        )
        return validation

    # ==================== Publishing ====================

    @staticmethod
    def _snapshot(story: Story, nodes: List[NodeData]) -> Dict[str, Any]:
        """Deep, JSON-ready copy of the story and its whole graph"""
        snapshot = story.to_data().model_dump(mode="json")
        for key in _SNAPSHOT_EXCLUDED_FIELDS:
            snapshot.pop(key, None)
        snapshot["nodes"] = [node.model_dump(mode="json") for node in nodes]
        return snapshot

    def publish(self, story_id: str) -> StoryData:
        """
        Publish a story for the first time (or republish a plain draft).

        Raises:
            NotFoundError: If the story does not exist
            ConflictError: If the story is already published or archived
            StoryValidationError: If the graph fails any structural check
            PersistenceError: If storage fails; nothing is changed
        """
        logger.info(f"Publishing story {story_id}")
        with self._story_lock(story_id):
            with self.database.session_scope() as db:
                story = self.database.load_story(db, story_id)
                state = story.to_state()
                self.state_machine.assert_can_publish(state)

                nodes = self.database.load_nodes_with_choices(db, story_id)
                self._require_publishable(story_id, nodes)

                version_number = self.versions.latest_version_number(story_id, db=db) + 1
                snapshot = self._snapshot(story, nodes)
                published_at = utcnow()

                story.apply_state(self.state_machine.publish(state, version_number))
                story.published_at = published_at
                self.versions.create_version(
                    StoryVersionCreate(
                        story_id=story_id,
                        version_number=version_number,
                        snapshot=snapshot,
                        published_at=published_at,
                        notes=f'Initial publication of "{story.title}"',
                    ),
                    db=db,
                )
                db.flush()
                result = story.to_data()

        logger.info(f"✓ Story published: {story_id} (Version: {version_number})")
        return result

    def publish_new_version(self, story_id: str, notes: Optional[str] = None) -> StoryData:
        """
        Publish the pending edit of an already published story.

        Args:
            story_id: Story to publish
            notes: Optional release notes; defaults to 'Version N of "<title>"'

        Raises:
            NotFoundError: If the story does not exist
            ConflictError: If the story is not a draft of a new version, or
                the version number is already taken
            StoryValidationError: If the graph fails any structural check
            PersistenceError: If storage fails; nothing is changed
        """
        logger.info(f"Publishing new version of story {story_id}")
        with self._story_lock(story_id):
            with self.database.session_scope() as db:
                story = self.database.load_story(db, story_id)
                state = story.to_state()
                version_number = self.state_machine.pending_version_number(state)

                nodes = self.database.load_nodes_with_choices(db, story_id)
                self._require_publishable(story_id, nodes)

                snapshot = self._snapshot(story, nodes)
                published_at = utcnow()

                story.apply_state(self.state_machine.publish_new_version(state))
                story.published_at = published_at
                self.versions.create_version(
                    StoryVersionCreate(
                        story_id=story_id,
                        version_number=version_number,
                        snapshot=snapshot,
                        published_at=published_at,
                        notes=notes or f'Version {version_number} of "{story.title}"',
                    ),
                    db=db,
                )
                db.flush()
                result = story.to_data()

        logger.info(f"✓ New story version published: {story_id} (Version: {version_number})")
        return result

    # ==================== Lifecycle edits ====================

    def archive_story(self, story_id: str) -> StoryData:
        """
        Archive a draft or published story. Archiving is terminal.

        Raises:
            NotFoundError: If the story does not exist
            ConflictError: If the story is already archived
        """
        with self._story_lock(story_id):
            with self.database.session_scope() as db:
                story = self.database.load_story(db, story_id)
                story.apply_state(self.state_machine.archive(story.to_state()))
                db.flush()
                result = story.to_data()

        logger.info(f"Story archived: {story_id}")
        return result

    def update_story(self, story_id: str, request: StoryUpdateRequest) -> StoryData:
        """
        Apply a partial story update.

        Editing narrative content (title, description, cover, genres,
        difficulty) of a published story reopens it as the draft of its next
        version. Metadata-only edits leave the status alone, and an explicit
        status change must be a legal transition.

        Raises:
            NotFoundError: If the story does not exist
            ConflictError: If the story is archived or the status change is illegal
        """
        changes = request.model_dump(exclude_unset=True)
        with self._story_lock(story_id):
            with self.database.session_scope() as db:
                story = self.database.load_story(db, story_id)
                original = story.to_state()
                self.state_machine.assert_editable(original)

                content = {
                    key: value
                    for key, value in changes.items()
                    if key in CONTENT_FIELDS
                    and (value is not None or key == "cover_image_url")
                }
                state = original
                if self.state_machine.is_content_edit(content):
                    state = self.state_machine.begin_new_version(state)
                    for key, value in content.items():
                        setattr(story, key, getattr(value, "value", value))

                if changes.get("metadata") is not None:
                    story.meta = dict(changes["metadata"])

                target = request.status
                if target is not None and target != original.status:
                    state = self.state_machine.change_status(state, target)

                if state != original:
                    story.apply_state(state)
                db.flush()
                result = story.to_data()

        if result.is_editing_new_version and not original.is_editing_new_version:
            logger.info(
                f"Published story moved to draft for editing: {story_id} "
                f"(Draft version: {result.draft_version})"
            )
        else:
            logger.info(f"Story updated: {story_id}")
        return result

    # ==================== Version history ====================

    def get_story_version_record(self, story_id: str, version_number: int) -> StoryVersionData:
        """
        Raises:
            NotFoundError: If the story or the version does not exist
        """
        with self.database.session_scope() as db:
            self.database.load_story(db, story_id)
            return self.versions.get_version(story_id, version_number, db=db)

    def get_story_version(self, story_id: str, version_number: int) -> Dict[str, Any]:
        """Snapshot of one published version"""
        return self.get_story_version_record(story_id, version_number).snapshot

    def list_story_versions(self, story_id: str) -> List[StoryVersionSummary]:
        """All published versions of a story, newest first"""
        with self.database.session_scope() as db:
            self.database.load_story(db, story_id)
            return self.versions.list_versions(story_id, db=db)
