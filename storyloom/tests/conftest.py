"""
Shared fixtures for the Storyloom test suite.
"""

from types import SimpleNamespace

import pytest

from storyloom.db.manager import DatabaseManager
from storyloom.db.versions import VersionStore
from storyloom.engine.publisher import PublishOrchestrator
from storyloom.schemas.story import (
    ChoiceCreateRequest,
    NodeCreateRequest,
    StoryCreateRequest,
)


@pytest.fixture
def database(tmp_path):
    """A fresh SQLite database per test"""
    db = DatabaseManager(str(tmp_path / "storyloom.db"))
    yield db
    db.dispose()


@pytest.fixture
def versions(database):
    return VersionStore(database)


@pytest.fixture
def orchestrator(database, versions):
    return PublishOrchestrator(database, versions=versions, lock_timeout=2.0)


@pytest.fixture
def make_story(database):
    """Factory creating draft stories"""

    def _make(title: str = "The Lighthouse Keeper", **kwargs):
        return database.create_story(StoryCreateRequest(title=title, **kwargs))

    return _make


@pytest.fixture
def playable_story(database, make_story):
    """Draft story with a start node leading to an ending node"""
    story = make_story()
    start = database.create_node(
        story.id,
        NodeCreateRequest(
            title="The Shore",
            content="Waves crash against the rocks.",
            metadata={"isStart": True},
        ),
    )
    ending = database.create_node(
        story.id,
        NodeCreateRequest(title="The Lamp", content="The light burns on.", is_ending=True),
    )
    choice = database.create_choice(
        start.id,
        ChoiceCreateRequest(
            target_node_id=ending.id,
            text="Climb the stairs",
            conditions={"requires": ["lantern"]},
        ),
    )
    return SimpleNamespace(story=story, start=start, ending=ending, choice=choice)
