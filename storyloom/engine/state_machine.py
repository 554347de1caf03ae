"""
Story lifecycle state machine.

States are DRAFT, PUBLISHED and ARCHIVED. A DRAFT story may additionally be
editing the next version of an earlier publication (EditingVersion). Every
transition returns a new StoryState; illegal ones raise ConflictError.
"""

from dataclasses import dataclass, field, replace
from typing import Iterable, Optional

from storyloom.engine.errors import ConflictError
from storyloom.schemas.story import EditingVersion, FreshDraft, StoryStatus

# Story fields whose edits change what readers see
CONTENT_FIELDS = frozenset(
    {"title", "description", "cover_image_url", "genres", "difficulty"}
)


@dataclass(frozen=True)
class StoryState:
    """The part of a story the lifecycle cares about"""

    status: StoryStatus
    current_version: Optional[int] = None
    draft_state: object = field(default_factory=FreshDraft)

    @property
    def is_editing_new_version(self) -> bool:
        return isinstance(self.draft_state, EditingVersion)


class StoryStateMachine:
    """Allowed status transitions of a story"""

    @staticmethod
    def is_content_edit(changed_fields: Iterable[str]) -> bool:
        """True when any changed field is narrative content rather than metadata"""
        return any(name in CONTENT_FIELDS for name in changed_fields)

    @staticmethod
    def assert_editable(state: StoryState) -> None:
        if state.status == StoryStatus.ARCHIVED:
            raise ConflictError("Archived stories cannot be edited")

    @staticmethod
    def assert_can_publish(state: StoryState) -> None:
        if state.status == StoryStatus.PUBLISHED:
            raise ConflictError("Story is already published")
        if state.status == StoryStatus.ARCHIVED:
            raise ConflictError("Archived stories cannot be published")

    @staticmethod
    def assert_can_publish_new_version(state: StoryState) -> None:
        if state.status != StoryStatus.DRAFT or not state.is_editing_new_version:
            raise ConflictError(
                "Story must be a draft of a new version to publish as a new version"
            )

    @staticmethod
    def assert_can_archive(state: StoryState) -> None:
        if state.status == StoryStatus.ARCHIVED:
            raise ConflictError("Story is already archived")

    def publish(self, state: StoryState, version_number: int) -> StoryState:
        """DRAFT --publish--> PUBLISHED"""
        self.assert_can_publish(state)
        return StoryState(
            status=StoryStatus.PUBLISHED,
            current_version=version_number,
            draft_state=FreshDraft(),
        )

    def pending_version_number(self, state: StoryState) -> int:
        """Version number the pending new-version draft will be published as"""
        self.assert_can_publish_new_version(state)
        if isinstance(state.draft_state, EditingVersion):
            return state.draft_state.version_number
        return (state.current_version or 0) + 1

    def publish_new_version(self, state: StoryState) -> StoryState:
        """DRAFT(EditingVersion) --publish_new_version--> PUBLISHED"""
        version_number = self.pending_version_number(state)
        return StoryState(
            status=StoryStatus.PUBLISHED,
            current_version=version_number,
            draft_state=FreshDraft(),
        )

    def begin_new_version(self, state: StoryState) -> StoryState:
        """PUBLISHED --edit content--> DRAFT(EditingVersion(current + 1))"""
        self.assert_editable(state)
        if state.status != StoryStatus.PUBLISHED:
            return state
        current = state.current_version or 1
        return StoryState(
            status=StoryStatus.DRAFT,
            current_version=current,
            draft_state=EditingVersion(version_number=current + 1),
        )

    def archive(self, state: StoryState) -> StoryState:
        """DRAFT | PUBLISHED --archive--> ARCHIVED"""
        self.assert_can_archive(state)
        return replace(state, status=StoryStatus.ARCHIVED)

    def change_status(self, state: StoryState, target: StoryStatus) -> StoryState:
        """
        Apply an explicit status change requested through a story update.

        Only archiving is reachable this way; publishing has its own
        operations and a published story returns to DRAFT only by editing
        its content.
        """
        self.assert_status_change(state, target)
        if target == state.status:
            return state
        return self.archive(state)

    @staticmethod
    def assert_status_change(state: StoryState, target: StoryStatus) -> None:
        if target == state.status:
            return
        if target == StoryStatus.ARCHIVED:
            StoryStateMachine.assert_can_archive(state)
            return
        raise ConflictError(
            f"Cannot change story status from {state.status.value} to {target.value}"
        )
