"""
learntrack/services/progress_service.py
Progress Service - the single entry point for progress mutations

SERIALIZATION:
==============
Every mutation of a (user, playlist) runs:
1. under the in-process asyncio.Lock for that key
2. inside one database transaction:
   read document -> ledger append (if any) -> recompute -> CAS write
3. under asyncio.wait_for(STORE_TIMEOUT_SECONDS)

A CAS miss (another process wrote first) raises ConflictError and the whole
transaction is rolled back, then replayed from a fresh read, at most
PROGRESS_MAX_RETRIES times. A timeout or driver failure rolls back and
raises StoreUnavailableError; nothing is half-applied because the ledger
append and the document write commit together.

Completion listeners run after commit, once per false -> true transition
of isCompleted.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Awaitable, Callable, Dict, Hashable, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from learntrack.config.settings import Settings, settings as default_settings
from learntrack.exceptions import ConflictError, NotFoundError, StoreUnavailableError
from learntrack.services.attempt_ledger import AttemptLedger, SqlLedgerStore
from learntrack.services.playlist_aggregator import (
    apply_video_list, apply_video_update, ensure_metadata, recompute
)
from learntrack.services.progress_state import (
    AssessmentAttempt, PlaylistMeta, PlaylistProgress, ProgressStats, VideoProgress, VideoUpdate
)
from learntrack.services.progress_store import SqlProgressStore
from learntrack.services.user_stats import compute_stats

logger = logging.getLogger(__name__)

CompletionListener = Callable[[PlaylistProgress], Awaitable[None]]


async def run_transaction(
    session_factory: async_sessionmaker,
    work: Callable[[AsyncSession], Awaitable],
    timeout: Optional[float]
):
    """
    Run work(db) in one transaction under the store timeout.

    Commits when work returns, rolls back on any exception or cancellation.

    Raises:
        StoreUnavailableError: timeout or SQLAlchemy driver failure
    """
    async def run():
        async with session_factory() as db:
            async with db.begin():
                return await work(db)

    try:
        return await asyncio.wait_for(run(), timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.error(f"[STORE TIMEOUT] after {timeout}s")
        raise StoreUnavailableError(
            "Progress store timed out",
            details={"timeout_seconds": timeout}
        ) from e
    except SQLAlchemyError as e:
        logger.error(f"[STORE FAILURE] {type(e).__name__}: {e}")
        raise StoreUnavailableError(details={"error": type(e).__name__}) from e


class KeyedLocks:
    """
    One asyncio.Lock per key, created on first use.

    An entry lives only while someone holds or waits for it; the last
    holder out removes it.
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._holders: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, *key):
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    def __len__(self):
        return len(self._locks)


@dataclass
class RecordedAttempt:
    attempt: AssessmentAttempt
    playlist: PlaylistProgress


class ProgressService:
    """
    Orchestrates ledger, tracker, aggregator and store.

    Args:
        session_factory: async_sessionmaker bound to the progress database
        settings: Runtime settings (module settings if None)
        clock: Returns "now"; datetime.utcnow if None
        listeners: Async callables notified when a playlist becomes completed
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        listeners: Optional[Sequence[CompletionListener]] = None
    ):
        self.session_factory = session_factory
        self.settings = settings or default_settings
        self.clock = clock or datetime.utcnow
        self.listeners: List[CompletionListener] = list(listeners or [])
        self.locks = KeyedLocks()

    def add_completion_listener(self, listener: CompletionListener):
        self.listeners.append(listener)

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    async def _transaction(self, work: Callable[[AsyncSession], Awaitable]):
        return await run_transaction(self.session_factory, work, self.settings.store_timeout_seconds)

    async def _mutate(
        self,
        user_id: str,
        playlist_id: str,
        operation: str,
        work: Callable[[AsyncSession], Awaitable[Tuple[PlaylistProgress, PlaylistProgress, object]]]
    ):
        """
        Serialize, run and retry one mutation.

        work(db) returns (before, after, result); `before` is the state read
        inside the transaction and is only used to detect completion.
        """
        retries = self.settings.progress_max_retries
        async with self.locks.hold(user_id, playlist_id):
            attempt = 0
            while True:
                try:
                    before, after, result = await self._transaction(work)
                    break
                except ConflictError:
                    if attempt >= retries:
                        logger.error(
                            f"[PROGRESS CONFLICT] {operation} user={user_id} playlist={playlist_id} "
                            f"gave up after {retries} retries"
                        )
                        raise
                    attempt += 1
                    logger.warning(
                        f"[PROGRESS RETRY] {operation} user={user_id} playlist={playlist_id} "
                        f"retry={attempt}/{retries}"
                    )

        if after.is_completed and not before.is_completed:
            await self._notify_completed(after)
        return result

    async def _notify_completed(self, playlist: PlaylistProgress):
        for listener in self.listeners:
            try:
                await listener(playlist)
            except Exception:
                # progress is already committed; a failing listener must not undo it
                logger.exception(
                    f"[COMPLETION LISTENER FAILED] user={playlist.user_id} playlist={playlist.playlist_id}"
                )

    def _blank(self, user_id: str, playlist_id: str) -> PlaylistProgress:
        return PlaylistProgress(user_id=user_id, playlist_id=playlist_id)

    async def _write(self, store: SqlProgressStore, state: PlaylistProgress, expected_version: int):
        state.version = await store.write(state.user_id, state.playlist_id, state, expected_version)
        return state

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def get_or_create_playlist(
        self,
        user_id: str,
        playlist_id: str,
        meta: Optional[PlaylistMeta] = None
    ) -> PlaylistProgress:
        """Existing playlist (metadata refreshed if given) or a new empty one."""
        async def work(db: AsyncSession):
            store = SqlProgressStore(db)
            current = await store.read(user_id, playlist_id)
            if current is not None:
                refreshed = ensure_metadata(replace(current), meta)
                if (refreshed.title, refreshed.thumbnail) == (current.title, current.thumbnail):
                    return current, current, current
                refreshed.last_accessed = self.clock()
                return current, refreshed, await self._write(store, refreshed, current.version)

            created = ensure_metadata(self._blank(user_id, playlist_id), meta)
            recompute(created, now=self.clock(), weighting=self.settings.overall_progress_weighting)
            logger.info(f"[PLAYLIST CREATED] user={user_id} playlist={playlist_id}")
            return created, created, await self._write(store, created, 0)

        return await self._mutate(user_id, playlist_id, "get_or_create_playlist", work)

    async def sync_playlist_videos(
        self,
        user_id: str,
        playlist_id: str,
        videos: Sequence[VideoUpdate],
        meta: Optional[PlaylistMeta] = None
    ) -> PlaylistProgress:
        """Upsert the playlist's video list in one write."""
        videos = list(videos)

        async def work(db: AsyncSession):
            store = SqlProgressStore(db)
            ledger = AttemptLedger(SqlLedgerStore(db))
            current = await store.read(user_id, playlist_id) or self._blank(user_id, playlist_id)
            attempts_by_video = await ledger.list_for_videos(user_id, [v.video_id for v in videos])
            updated = apply_video_list(
                current,
                videos,
                meta=meta,
                attempts_by_video=attempts_by_video,
                now=self.clock(),
                weighting=self.settings.overall_progress_weighting,
                pass_score=self.settings.video_pass_score,
            )
            return current, updated, await self._write(store, updated, current.version)

        return await self._mutate(user_id, playlist_id, "sync_playlist_videos", work)

    async def update_video_progress(
        self,
        user_id: str,
        playlist_id: str,
        update: VideoUpdate
    ) -> PlaylistProgress:
        """Merge a watch-progress update for one video and recompute the playlist."""
        async def work(db: AsyncSession):
            store = SqlProgressStore(db)
            ledger = AttemptLedger(SqlLedgerStore(db))
            current = await store.read(user_id, playlist_id) or self._blank(user_id, playlist_id)
            attempts = await ledger.list_attempts(user_id, update.video_id)
            updated = apply_video_update(
                current,
                update,
                attempts=attempts,
                now=self.clock(),
                weighting=self.settings.overall_progress_weighting,
                pass_score=self.settings.video_pass_score,
            )
            return current, updated, await self._write(store, updated, current.version)

        return await self._mutate(user_id, playlist_id, "update_video_progress", work)

    async def record_attempt(
        self,
        user_id: str,
        playlist_id: str,
        video_id: str,
        test_score: float,
        cli_value: float,
        cli_classification: str,
        confidence: float,
        time_spent: float,
        assessment_id: str,
        completed_at: Optional[datetime] = None,
        attempt_number: Optional[int] = None
    ) -> RecordedAttempt:
        """
        Append an assessment attempt and fold it into the playlist.

        attemptNumber is assigned here (current max + 1) while the key lock
        is held; a caller-supplied attempt_number must match it.

        Raises:
            ValidationError: attempt fields out of range or a wrong attempt_number
            ConflictError: still conflicting after PROGRESS_MAX_RETRIES
            StoreUnavailableError: store timeout/failure (nothing recorded)
        """
        async def work(db: AsyncSession):
            store = SqlProgressStore(db)
            ledger = AttemptLedger(SqlLedgerStore(db))
            current = await store.read(user_id, playlist_id) or self._blank(user_id, playlist_id)

            number = attempt_number
            if number is None:
                number = await ledger.next_attempt_number(user_id, video_id)
            attempt = await ledger.record(
                user_id,
                video_id,
                AssessmentAttempt(
                    attempt_number=number,
                    test_score=test_score,
                    cli_value=cli_value,
                    cli_classification=cli_classification,
                    confidence=confidence,
                    time_spent=time_spent,
                    completed_at=completed_at or self.clock(),
                    assessment_id=assessment_id,
                ),
                playlist_id=playlist_id
            )

            attempts = await ledger.list_attempts(user_id, video_id)
            updated = apply_video_update(
                current,
                VideoUpdate(video_id=video_id),
                attempts=attempts,
                now=self.clock(),
                weighting=self.settings.overall_progress_weighting,
                pass_score=self.settings.video_pass_score,
            )
            updated = await self._write(store, updated, current.version)
            return current, updated, RecordedAttempt(attempt=attempt, playlist=updated)

        recorded = await self._mutate(user_id, playlist_id, "record_attempt", work)
        await self._refresh_shared_video(user_id, playlist_id, video_id)
        return recorded

    async def _refresh_shared_video(self, user_id: str, playlist_id: str, video_id: str):
        """
        Re-derive video_id in the user's other playlists from the ledger.

        The attempt is already committed, so a failed refresh is logged and
        left to the next mutation of that playlist.
        """
        try:
            playlists = await self.list_user_progress(user_id)
        except StoreUnavailableError as e:
            logger.warning(f"[ATTEMPT FAN-OUT FAILED] user={user_id} video={video_id}: {e.message}")
            return
        for other in playlists:
            if other.playlist_id == playlist_id or video_id not in other.videos:
                continue
            try:
                await self.update_video_progress(user_id, other.playlist_id, VideoUpdate(video_id=video_id))
            except (ConflictError, StoreUnavailableError) as e:
                logger.warning(
                    f"[ATTEMPT FAN-OUT FAILED] user={user_id} playlist={other.playlist_id} "
                    f"video={video_id}: {e.message}"
                )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_playlist_progress(self, user_id: str, playlist_id: str) -> PlaylistProgress:
        async def work(db: AsyncSession):
            return await SqlProgressStore(db).read(user_id, playlist_id)

        progress = await self._transaction(work)
        if progress is None:
            raise NotFoundError("Playlist progress", playlist_id)
        return progress

    async def get_video_progress(self, user_id: str, playlist_id: str, video_id: str) -> VideoProgress:
        progress = await self.get_playlist_progress(user_id, playlist_id)
        video = progress.videos.get(video_id)
        if video is None:
            raise NotFoundError("Video progress", video_id)
        return video

    async def list_user_progress(self, user_id: str) -> List[PlaylistProgress]:
        """All of the user's playlists, most recently accessed first."""
        async def work(db: AsyncSession):
            return await SqlProgressStore(db).list_for_user(user_id)

        return await self._transaction(work)

    async def get_user_stats(self, user_id: str) -> ProgressStats:
        playlists = await self.list_user_progress(user_id)
        return compute_stats(playlists, recent_limit=self.settings.recent_activity_limit)
