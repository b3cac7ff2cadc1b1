"""
learntrack/services/progress_store.py
Progress Store - versioned PlaylistProgress documents

write() is a compare-and-swap:
    UPDATE playlist_progress SET document=..., version=version+1
    WHERE user_id=? AND playlist_id=? AND version=<expected>
A rowcount of 0 means another writer committed in between -> ConflictError.
expected_version 0 means "not stored yet" and INSERTs; the unique
(user_id, playlist_id) constraint turns a lost creation race into the same
ConflictError.

The store runs on the caller's session and never commits; ProgressService
owns the transaction.
"""
import logging
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from learntrack.exceptions import ConflictError
from learntrack.orm.playlist_progress import PlaylistProgressRecord
from learntrack.services.progress_state import PlaylistProgress

logger = logging.getLogger(__name__)


def _to_progress(row: PlaylistProgressRecord) -> PlaylistProgress:
    return PlaylistProgress.from_dict(row.document, id=row.id, version=row.version)


class SqlProgressStore:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def read(self, user_id: str, playlist_id: str) -> Optional[PlaylistProgress]:
        result = await self.db.execute(
            select(PlaylistProgressRecord).where(
                PlaylistProgressRecord.user_id == user_id,
                PlaylistProgressRecord.playlist_id == playlist_id
            )
        )
        row = result.scalar_one_or_none()
        return _to_progress(row) if row else None

    async def write(self, user_id: str, playlist_id: str, state: PlaylistProgress,
                    expected_version: int) -> int:
        """
        Replace the stored document if its version is still expected_version.

        Returns:
            The new version

        Raises:
            ConflictError: stored version moved on (or a concurrent create won)
        """
        document = state.to_dict()

        if expected_version == 0:
            row = PlaylistProgressRecord(
                user_id=user_id,
                playlist_id=playlist_id,
                version=1,
                document=document,
                last_accessed=state.last_accessed,
                is_completed=state.is_completed,
            )
            self.db.add(row)
            try:
                await self.db.flush()
            except IntegrityError as e:
                logger.warning(f"[PROGRESS CONFLICT] user={user_id} playlist={playlist_id} concurrent create")
                raise ConflictError(
                    f"Progress for playlist {playlist_id} was created concurrently",
                    expected_version=expected_version
                ) from e
            state.id = row.id
            return 1

        result = await self.db.execute(
            update(PlaylistProgressRecord)
            .where(
                PlaylistProgressRecord.user_id == user_id,
                PlaylistProgressRecord.playlist_id == playlist_id,
                PlaylistProgressRecord.version == expected_version
            )
            .values(
                version=PlaylistProgressRecord.version + 1,
                document=document,
                last_accessed=state.last_accessed,
                is_completed=state.is_completed,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning(
                f"[PROGRESS CONFLICT] user={user_id} playlist={playlist_id} "
                f"expected_version={expected_version}"
            )
            raise ConflictError(
                f"Progress for playlist {playlist_id} changed since version {expected_version}",
                expected_version=expected_version
            )
        return expected_version + 1

    async def list_for_user(self, user_id: str) -> List[PlaylistProgress]:
        """All of a user's playlists, most recently accessed first."""
        result = await self.db.execute(
            select(PlaylistProgressRecord)
            .where(PlaylistProgressRecord.user_id == user_id)
            .order_by(
                PlaylistProgressRecord.last_accessed.desc(),
                PlaylistProgressRecord.playlist_id.asc()
            )
        )
        return [_to_progress(row) for row in result.scalars().all()]
