"""
Tests for publishing, versioning and lifecycle edits of stories.
"""

import threading
import time
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from storyloom.db.manager import DatabaseManager
from storyloom.db.schema import StoryVersion
from storyloom.engine.errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    StoryValidationError,
)
from storyloom.engine.publisher import PublishOrchestrator
from storyloom.schemas.story import (
    NodeCreateRequest,
    NodeUpdateRequest,
    StoryStatus,
    StoryUpdateRequest,
)


def raw_version(database, story_id, number):
    """Stored snapshot text and checksum, straight from the table"""
    with database.session_scope() as db:
        row = (
            db.query(StoryVersion)
            .filter(
                StoryVersion.story_id == story_id,
                StoryVersion.version_number == number,
            )
            .one()
        )
        return row.snapshot, row.snapshot_checksum


class TestValidation:
    def test_playable_story_is_valid(self, orchestrator, playable_story):
        validation = orchestrator.validate_for_publishing(playable_story.story.id)
        assert validation.is_valid is True
        assert validation.violations == []
        assert validation.message is None

    def test_empty_story_lists_every_violation(self, orchestrator, make_story):
        story = make_story()
        validation = orchestrator.validate_for_publishing(story.id)
        assert validation.is_valid is False
        assert validation.violations == ["Missing start node.", "Missing ending nodes."]
        assert validation.message.startswith("Story structure validation failed:")

    def test_structure_of_missing_story(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.validate_story_structure("missing")


class TestPublish:
    def test_first_publish_creates_version_one(self, orchestrator, playable_story):
        story = orchestrator.publish(playable_story.story.id)

        assert story.status == StoryStatus.PUBLISHED
        assert story.current_version == 1
        assert story.is_editing_new_version is False
        assert story.published_at is not None

        versions = orchestrator.list_story_versions(story.id)
        assert len(versions) == 1
        assert versions[0].version_number == 1
        assert versions[0].notes == 'Initial publication of "The Lighthouse Keeper"'

    def test_snapshot_freezes_graph(self, orchestrator, playable_story):
        orchestrator.publish(playable_story.story.id)
        snapshot = orchestrator.get_story_version(playable_story.story.id, 1)

        assert snapshot["id"] == playable_story.story.id
        assert snapshot["status"] == "DRAFT"
        assert "draft_state" not in snapshot
        assert [n["id"] for n in snapshot["nodes"]] == [
            playable_story.start.id,
            playable_story.ending.id,
        ]
        choices = snapshot["nodes"][0]["choices"]
        assert choices[0]["id"] == playable_story.choice.id
        assert choices[0]["conditions"] == {"requires": ["lantern"]}

    def test_missing_story(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.publish("missing")

    def test_already_published(self, orchestrator, playable_story):
        orchestrator.publish(playable_story.story.id)
        with pytest.raises(ConflictError, match="already published"):
            orchestrator.publish(playable_story.story.id)
        assert len(orchestrator.list_story_versions(playable_story.story.id)) == 1

    def test_invalid_graph_is_rejected(self, orchestrator, database, playable_story):
        database.create_node(playable_story.story.id, NodeCreateRequest(title="Cellar"))

        with pytest.raises(StoryValidationError) as exc_info:
            orchestrator.publish(playable_story.story.id)

        error = exc_info.value
        assert "Found 1 orphaned nodes." in error.violations
        assert "Found 1 unreachable nodes." in error.violations
        assert "Found 1 dead ends." in error.violations
        assert error.message.startswith("Story structure validation failed:")

        story = database.get_story(playable_story.story.id)
        assert story.status == StoryStatus.DRAFT
        assert story.current_version is None
        assert orchestrator.list_story_versions(story.id) == []

    def test_storage_failure_changes_nothing(self, orchestrator, database, playable_story):
        failure = OperationalError("INSERT", {}, Exception("disk I/O error"))
        with patch.object(orchestrator.versions, "create_version", side_effect=failure):
            with pytest.raises(PersistenceError):
                orchestrator.publish(playable_story.story.id)

        story = database.get_story(playable_story.story.id)
        assert story.status == StoryStatus.DRAFT
        assert story.current_version is None
        assert story.published_at is None
        assert orchestrator.list_story_versions(story.id) == []

    def test_archived_story_cannot_publish(self, orchestrator, playable_story):
        orchestrator.archive_story(playable_story.story.id)
        with pytest.raises(ConflictError):
            orchestrator.publish(playable_story.story.id)


class TestNewVersion:
    def test_requires_editing_overlay(self, orchestrator, playable_story):
        with pytest.raises(ConflictError, match="draft of a new version"):
            orchestrator.publish_new_version(playable_story.story.id)

        orchestrator.publish(playable_story.story.id)
        with pytest.raises(ConflictError, match="draft of a new version"):
            orchestrator.publish_new_version(playable_story.story.id)

    def test_full_cycle_keeps_earlier_version_intact(
        self, orchestrator, database, playable_story
    ):
        story_id = playable_story.story.id
        orchestrator.publish(story_id)
        v1_text, v1_checksum = raw_version(database, story_id, 1)

        edited = orchestrator.update_story(
            story_id, StoryUpdateRequest(title="The Lighthouse Keeper (Revised)")
        )
        assert edited.status == StoryStatus.DRAFT
        assert edited.current_version == 1
        assert edited.draft_version == 2

        database.update_node(
            playable_story.ending.id, NodeUpdateRequest(content="The light goes dark.")
        )
        published = orchestrator.publish_new_version(story_id)

        assert published.status == StoryStatus.PUBLISHED
        assert published.current_version == 2
        assert published.is_editing_new_version is False

        assert raw_version(database, story_id, 1) == (v1_text, v1_checksum)
        v1 = orchestrator.get_story_version(story_id, 1)
        v2 = orchestrator.get_story_version(story_id, 2)
        assert v1["title"] == "The Lighthouse Keeper"
        assert v2["title"] == "The Lighthouse Keeper (Revised)"
        assert v1["nodes"][1]["content"] == "The light burns on."
        assert v2["nodes"][1]["content"] == "The light goes dark."

        versions = orchestrator.list_story_versions(story_id)
        assert [v.version_number for v in versions] == [2, 1]
        assert versions[0].notes == 'Version 2 of "The Lighthouse Keeper (Revised)"'

    def test_custom_notes(self, orchestrator, playable_story):
        story_id = playable_story.story.id
        orchestrator.publish(story_id)
        orchestrator.update_story(story_id, StoryUpdateRequest(description="Foggier"))
        orchestrator.publish_new_version(story_id, notes="Added fog")
        assert orchestrator.get_story_version_record(story_id, 2).notes == "Added fog"

    def test_invalid_edit_keeps_overlay(self, orchestrator, database, playable_story):
        story_id = playable_story.story.id
        orchestrator.publish(story_id)
        database.create_node(story_id, NodeCreateRequest(title="Cellar"))

        with pytest.raises(StoryValidationError):
            orchestrator.publish_new_version(story_id)

        story = database.get_story(story_id)
        assert story.status == StoryStatus.DRAFT
        assert story.draft_version == 2
        assert len(orchestrator.list_story_versions(story_id)) == 1

    def test_missing_version(self, orchestrator, playable_story):
        orchestrator.publish(playable_story.story.id)
        with pytest.raises(NotFoundError):
            orchestrator.get_story_version(playable_story.story.id, 2)
        with pytest.raises(NotFoundError):
            orchestrator.get_story_version("missing", 1)


class TestUpdates:
    def test_metadata_edit_keeps_published(self, orchestrator, playable_story):
        story_id = playable_story.story.id
        orchestrator.publish(story_id)
        story = orchestrator.update_story(
            story_id, StoryUpdateRequest(metadata={"theme": "dark"})
        )
        assert story.status == StoryStatus.PUBLISHED
        assert story.is_editing_new_version is False
        assert story.metadata == {"theme": "dark"}

    def test_draft_edit_stays_fresh(self, orchestrator, make_story):
        story = make_story()
        updated = orchestrator.update_story(
            story.id, StoryUpdateRequest(title="Renamed", genres=["mystery"])
        )
        assert updated.title == "Renamed"
        assert updated.genres == ["mystery"]
        assert updated.is_editing_new_version is False

    def test_cover_image_can_be_cleared(self, orchestrator, make_story):
        story = make_story(cover_image_url="https://example.com/cover.png")
        updated = orchestrator.update_story(
            story.id, StoryUpdateRequest(cover_image_url=None)
        )
        assert updated.cover_image_url is None

    def test_cannot_unpublish_by_status(self, orchestrator, playable_story):
        story_id = playable_story.story.id
        orchestrator.publish(story_id)
        with pytest.raises(ConflictError):
            orchestrator.update_story(story_id, StoryUpdateRequest(status=StoryStatus.DRAFT))

    def test_status_update_archives(self, orchestrator, make_story):
        story = make_story()
        updated = orchestrator.update_story(
            story.id, StoryUpdateRequest(status=StoryStatus.ARCHIVED)
        )
        assert updated.status == StoryStatus.ARCHIVED

    def test_missing_story(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.update_story("missing", StoryUpdateRequest(title="x"))


class TestArchive:
    def test_archive_published_story(self, orchestrator, playable_story):
        story_id = playable_story.story.id
        orchestrator.publish(story_id)
        archived = orchestrator.archive_story(story_id)
        assert archived.status == StoryStatus.ARCHIVED
        assert archived.current_version == 1
        assert orchestrator.get_story_version(story_id, 1)["title"] == "The Lighthouse Keeper"

    def test_archived_story_is_read_only(self, orchestrator, playable_story):
        story_id = playable_story.story.id
        orchestrator.archive_story(story_id)
        with pytest.raises(ConflictError):
            orchestrator.archive_story(story_id)
        with pytest.raises(ConflictError):
            orchestrator.update_story(story_id, StoryUpdateRequest(title="Again"))


class TestConcurrency:
    def test_lock_timeout_is_a_conflict(self, database, versions, playable_story):
        orchestrator = PublishOrchestrator(database, versions=versions, lock_timeout=0.05)
        story_id = playable_story.story.id

        with orchestrator._story_lock(story_id):
            with pytest.raises(ConflictError, match="in progress"):
                orchestrator.publish(story_id)

        assert orchestrator._locks == {}
        assert orchestrator.publish(story_id).current_version == 1

    def test_locks_are_dropped_after_use(self, orchestrator, playable_story):
        """Unknown story ids must not leave locks behind"""
        for i in range(50):
            with pytest.raises(NotFoundError):
                orchestrator.publish(f"missing-{i}")
        assert orchestrator._locks == {}

        story_id = playable_story.story.id
        with orchestrator._story_lock(story_id):
            assert list(orchestrator._locks) == [story_id]
        orchestrator.publish(story_id)
        orchestrator.archive_story(story_id)
        assert orchestrator._locks == {}

    def test_graph_edit_during_publish_waits_for_it(
        self, orchestrator, database, playable_story
    ):
        """A node added while a publish is running lands after it and reopens the story"""
        story_id = playable_story.story.id
        load_nodes = DatabaseManager.load_nodes_with_choices
        editor_started = threading.Event()
        outcome = {}

        def add_cellar():
            editor_started.set()
            try:
                outcome["node"] = database.create_node(story_id, NodeCreateRequest(title="Cellar"))
            except Exception as e:
                outcome["error"] = e

        editor = threading.Thread(target=add_cellar)

        def load_then_edit(db, sid):
            nodes = load_nodes(db, sid)
            editor.start()
            editor_started.wait(timeout=1)
            time.sleep(0.2)
            return nodes

        with patch.object(database, "load_nodes_with_choices", side_effect=load_then_edit):
            published = orchestrator.publish(story_id)
        editor.join(timeout=10)

        assert "error" not in outcome
        assert published.status == StoryStatus.PUBLISHED
        assert published.current_version == 1

        story = database.get_story(story_id)
        assert story.status == StoryStatus.DRAFT
        assert story.current_version == 1
        assert story.draft_version == 2

        snapshot = orchestrator.get_story_version(story_id, 1)
        assert outcome["node"].id not in [n["id"] for n in snapshot["nodes"]]

    def test_duplicate_version_insert_rolls_back(self, orchestrator, database, playable_story):
        """The unique (story, version) constraint catches writers that skip the number check"""
        story_id = playable_story.story.id
        orchestrator.publish(story_id)
        orchestrator.update_story(story_id, StoryUpdateRequest(title="Second printing"))

        with patch.object(orchestrator.versions, "latest_version_number", return_value=0):
            with pytest.raises(ConflictError, match="already exists"):
                orchestrator.publish(story_id)

        story = database.get_story(story_id)
        assert story.status == StoryStatus.DRAFT
        assert story.current_version == 1
        assert story.draft_version == 2
        assert [v.version_number for v in orchestrator.list_story_versions(story_id)] == [1]
        assert orchestrator.get_story_version(story_id, 1)["title"] == "The Lighthouse Keeper"

    def test_concurrent_publishes_yield_one_version(self, orchestrator, playable_story):
        story_id = playable_story.story.id
        barrier = threading.Barrier(4)
        outcomes = []

        def publish():
            barrier.wait()
            try:
                orchestrator.publish(story_id)
                outcomes.append("published")
            except ConflictError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=publish) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("published") == 1
        assert outcomes.count("conflict") == 3
        assert [v.version_number for v in orchestrator.list_story_versions(story_id)] == [1]
