"""
Append-only ledger of published story versions.

Versions are inserted once and never updated or deleted. Every read
verifies the stored snapshot text against the checksum recorded at insert
time.
"""

from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from storyloom.db.manager import DatabaseManager
from storyloom.db.schema import StoryVersion
from storyloom.engine.errors import ConflictError, NotFoundError, PersistenceError
from storyloom.schemas.snapshot import canonical_json, snapshot_checksum
from storyloom.schemas.story import (
    StoryVersionCreate,
    StoryVersionData,
    StoryVersionSummary,
)
from storyloom.schemas.validation import validate_snapshot
from storyloom.utils.logger import get_logger

logger = get_logger(__name__)


class VersionStore:
    """
    Write-once store of StoryVersion rows.

    Every method accepts an optional open session so callers can include the
    read or insert in a wider transaction; without one, the method runs in
    its own.
    """

    def __init__(self, database: DatabaseManager):
        self.database = database

    @contextmanager
    def _scope(self, db: Optional[DBSession]) -> Iterator[DBSession]:
        if db is not None:
            yield db
        else:
            with self.database.session_scope() as session:
                yield session

    @staticmethod
    def _verified(version: StoryVersion) -> StoryVersionData:
        if snapshot_checksum(version.snapshot) != version.snapshot_checksum:
            logger.error(
                f"Snapshot checksum mismatch for story {version.story_id} "
                f"version {version.version_number}"
            )
            raise PersistenceError(
                f"Stored snapshot for version {version.version_number} is corrupted"
            )
        return version.to_data()

    def latest_version_number(self, story_id: str, db: Optional[DBSession] = None) -> int:
        """Highest version number for a story, or 0 when it has none"""
        with self._scope(db) as session:
            row = (
                session.query(StoryVersion.version_number)
                .filter(StoryVersion.story_id == story_id)
                .order_by(desc(StoryVersion.version_number))
                .first()
            )
            return row[0] if row else 0

    def get_latest_version(
        self, story_id: str, db: Optional[DBSession] = None
    ) -> Optional[StoryVersionData]:
        """
        Get the most recent version of a story.

        Returns:
            The version with the highest number, or None if none exist
        """
        with self._scope(db) as session:
            version = (
                session.query(StoryVersion)
                .filter(StoryVersion.story_id == story_id)
                .order_by(desc(StoryVersion.version_number))
                .first()
            )
            return self._verified(version) if version else None

    def get_version(
        self, story_id: str, version_number: int, db: Optional[DBSession] = None
    ) -> StoryVersionData:
        """
        Get a specific version of a story.

        Raises:
            NotFoundError: If the story has no such version
        """
        with self._scope(db) as session:
            version = (
                session.query(StoryVersion)
                .filter(
                    StoryVersion.story_id == story_id,
                    StoryVersion.version_number == version_number,
                )
                .first()
            )
            if version is None:
                raise NotFoundError(
                    f"Version {version_number} not found for story {story_id}"
                )
            return self._verified(version)

    def list_versions(
        self, story_id: str, db: Optional[DBSession] = None
    ) -> List[StoryVersionSummary]:
        """All versions of a story, newest first"""
        with self._scope(db) as session:
            versions = (
                session.query(StoryVersion)
                .filter(StoryVersion.story_id == story_id)
                .order_by(desc(StoryVersion.version_number))
                .all()
            )
            return [version.to_summary() for version in versions]

    def create_version(
        self, data: StoryVersionCreate, db: Optional[DBSession] = None
    ) -> StoryVersionData:
        """
        Append a version to the ledger.

        Args:
            data: Story id, version number, snapshot, publish time and notes
            db: Optional session of an enclosing transaction

        Returns:
            The stored version

        Raises:
            ConflictError: If the story already has this version number, or
                the number does not exceed the latest one
            PersistenceError: If the snapshot is structurally incomplete
        """
        try:
            validate_snapshot(data.snapshot)
        except ValueError as e:
            raise PersistenceError(f"Refusing to store incomplete snapshot: {e}") from e

        snapshot_text = canonical_json(data.snapshot)

        with self._scope(db) as session:
            latest = self.latest_version_number(data.story_id, db=session)
            if data.version_number <= latest:
                raise ConflictError(
                    f"Version {data.version_number} of story {data.story_id} "
                    f"conflicts with existing version {latest}"
                )

            version = StoryVersion(
                story_id=data.story_id,
                version_number=data.version_number,
                snapshot=snapshot_text,
                snapshot_checksum=snapshot_checksum(snapshot_text),
                published_at=data.published_at,
                notes=data.notes,
            )
            session.add(version)
            try:
                session.flush()
            except IntegrityError as e:
                # Another writer inserted the same number first
                raise ConflictError(
                    f"Version {data.version_number} of story {data.story_id} already exists"
                ) from e

            logger.info(
                f"Story version created: {version.id} "
                f"(Story: {data.story_id}, Version: {data.version_number})"
            )
            return version.to_data()
