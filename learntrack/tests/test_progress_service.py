"""
learntrack/tests/test_progress_service.py
ProgressService: serialization, compare-and-swap retries, timeouts, listeners
"""
import asyncio
from dataclasses import replace

import pytest

from learntrack.exceptions import ConflictError, NotFoundError, StoreUnavailableError, ValidationError
from learntrack.services.attempt_ledger import SqlLedgerStore
from learntrack.services.progress_service import KeyedLocks, ProgressService
from learntrack.services.progress_state import PlaylistMeta, VideoUpdate
from learntrack.services.progress_store import SqlProgressStore


def attempt_kwargs(score: float = 80.0, assessment_id: str = "asm-1", **overrides):
    fields = dict(
        test_score=score,
        cli_value=42.0,
        cli_classification="Moderate Load",
        confidence=0.75,
        time_spent=300.0,
        assessment_id=assessment_id,
    )
    fields.update(overrides)
    return fields


async def ledger_attempts(session_factory, user_id, video_id):
    async with session_factory() as db:
        return await SqlLedgerStore(db).list(user_id, video_id)


class TestKeyedLocks:

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        locks = KeyedLocks()
        order = []

        async def critical(name):
            async with locks.hold("u1", "p1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(critical("a"), critical("b"))
        assert order == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_entry_is_evicted_once_released(self):
        locks = KeyedLocks()
        async with locks.hold("u1", "p1"):
            async with locks.hold("u1", "p2"):
                assert len(locks) == 2
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_entry_survives_while_a_waiter_is_queued(self):
        locks = KeyedLocks()
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with locks.hold("u1", "p1"):
                entered.set()
                await release.wait()

        async def waiter():
            async with locks.hold("u1", "p1"):
                assert len(locks) == 1

        first = asyncio.create_task(holder())
        await entered.wait()
        second = asyncio.create_task(waiter())
        await asyncio.sleep(0)
        release.set()
        await asyncio.gather(first, second)
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_service_keeps_no_locks_for_idle_playlists(self, progress_service):
        for i in range(50):
            await progress_service.update_video_progress("u1", f"p{i}", VideoUpdate("v1", watch_time=10))
        assert len(progress_service.locks) == 0


class TestPlaylistLifecycle:

    @pytest.mark.asyncio
    async def test_get_or_create_is_idempotent(self, progress_service):
        created = await progress_service.get_or_create_playlist("u1", "p1", PlaylistMeta(title="Physics"))
        assert created.version == 1
        assert created.title == "Physics"
        assert created.id is not None

        again = await progress_service.get_or_create_playlist("u1", "p1")
        assert again.version == 1
        assert again.title == "Physics"

    @pytest.mark.asyncio
    async def test_new_metadata_is_written(self, progress_service):
        await progress_service.get_or_create_playlist("u1", "p1", PlaylistMeta(title="Physics"))
        renamed = await progress_service.get_or_create_playlist("u1", "p1", PlaylistMeta(title="Physics II"))
        assert renamed.version == 2
        stored = await progress_service.get_playlist_progress("u1", "p1")
        assert stored.title == "Physics II"

    @pytest.mark.asyncio
    async def test_sync_then_update(self, progress_service):
        synced = await progress_service.sync_playlist_videos("u1", "p1", [
            VideoUpdate("v1", title="Intro", total_duration=100),
            VideoUpdate("v2", title="Vectors", total_duration=300),
        ], meta=PlaylistMeta(title="Mechanics"))
        assert synced.total_videos == 2
        assert list(synced.videos) == ["v1", "v2"]

        updated = await progress_service.update_video_progress("u1", "p1", VideoUpdate("v1", watch_time=100))
        assert updated.version == 2
        assert updated.videos["v1"].completion_percentage == 100.0
        assert updated.overall_progress == 50.0

        regressed = await progress_service.update_video_progress("u1", "p1", VideoUpdate("v1", watch_time=10))
        assert regressed.videos["v1"].watch_time == 100

    @pytest.mark.asyncio
    async def test_reads(self, progress_service):
        await progress_service.update_video_progress("u1", "p1", VideoUpdate("v1", watch_time=30))

        video = await progress_service.get_video_progress("u1", "p1", "v1")
        assert video.watch_time == 30

        with pytest.raises(NotFoundError):
            await progress_service.get_playlist_progress("u1", "missing")
        with pytest.raises(NotFoundError):
            await progress_service.get_video_progress("u1", "p1", "missing")

    @pytest.mark.asyncio
    async def test_list_user_progress_most_recent_first(self, progress_service):
        await progress_service.get_or_create_playlist("u1", "p1")
        await progress_service.get_or_create_playlist("u1", "p2")
        await progress_service.get_or_create_playlist("u2", "p9")
        await progress_service.update_video_progress("u1", "p1", VideoUpdate("v1", watch_time=5))

        playlists = await progress_service.list_user_progress("u1")
        assert [p.playlist_id for p in playlists] == ["p1", "p2"]

    @pytest.mark.asyncio
    async def test_user_stats(self, progress_service):
        await progress_service.record_attempt("u1", "p1", "v1", **attempt_kwargs(score=90.0))
        await progress_service.sync_playlist_videos("u1", "p2", [VideoUpdate("v9")])

        stats = await progress_service.get_user_stats("u1")
        assert stats.total_playlists == 2
        assert stats.completed_playlists == 1
        assert stats.average_score == 90.0
        assert [p.playlist_id for p in stats.recent_activity] == ["p2", "p1"]


class TestRecordAttempt:

    @pytest.mark.asyncio
    async def test_attempt_numbers_are_assigned(self, progress_service, session_factory):
        first = await progress_service.record_attempt("u1", "p1", "v1", **attempt_kwargs(score=50.0))
        second = await progress_service.record_attempt("u1", "p1", "v1", **attempt_kwargs(score=65.0))

        assert first.attempt.attempt_number == 1
        assert second.attempt.attempt_number == 2
        video = second.playlist.videos["v1"]
        assert video.total_attempts == 2
        assert video.best_score == 65.0
        assert video.average_score == 57.5
        assert video.is_completed is False
        assert len(await ledger_attempts(session_factory, "u1", "v1")) == 2

    @pytest.mark.asyncio
    async def test_passing_attempt_completes_playlist(self, progress_service):
        recorded = await progress_service.record_attempt("u1", "p1", "v1", **attempt_kwargs(score=70.0))
        assert recorded.playlist.videos["v1"].is_completed is True
        assert recorded.playlist.is_completed is True
        assert recorded.playlist.completed_at is not None

    @pytest.mark.asyncio
    async def test_attempt_refreshes_the_same_video_in_other_playlists(self, progress_service):
        await progress_service.sync_playlist_videos("u1", "p1", [VideoUpdate("v1"), VideoUpdate("v2")])
        await progress_service.sync_playlist_videos("u1", "p2", [VideoUpdate("v1")])
        await progress_service.sync_playlist_videos("u1", "p3", [VideoUpdate("v7")])

        await progress_service.record_attempt("u1", "p1", "v1", **attempt_kwargs(score=90.0))

        shared = await progress_service.get_video_progress("u1", "p2", "v1")
        assert shared.total_attempts == 1
        assert shared.best_score == 90.0
        assert (await progress_service.get_playlist_progress("u1", "p2")).is_completed
        assert (await progress_service.get_playlist_progress("u1", "p3")).version == 1

        stats = await progress_service.get_user_stats("u1")
        assert stats.completed_playlists == 1
        assert stats.average_score == 90.0

    @pytest.mark.asyncio
    async def test_explicit_attempt_number_must_be_next(self, progress_service, session_factory):
        with pytest.raises(ValidationError) as exc:
            await progress_service.record_attempt("u1", "p1", "v1", attempt_number=3, **attempt_kwargs())
        assert exc.value.details["expected"] == 1
        assert await ledger_attempts(session_factory, "u1", "v1") == []

        recorded = await progress_service.record_attempt("u1", "p1", "v1", attempt_number=1, **attempt_kwargs())
        assert recorded.attempt.attempt_number == 1

    @pytest.mark.asyncio
    async def test_invalid_attempt_leaves_no_trace(self, progress_service, session_factory):
        with pytest.raises(ValidationError):
            await progress_service.record_attempt("u1", "p1", "v1", **attempt_kwargs(score=140.0))
        assert await ledger_attempts(session_factory, "u1", "v1") == []
        with pytest.raises(NotFoundError):
            await progress_service.get_playlist_progress("u1", "p1")

    @pytest.mark.asyncio
    async def test_concurrent_attempts_get_distinct_numbers(self, progress_service):
        results = await asyncio.gather(*[
            progress_service.record_attempt("u1", "p1", "v1", **attempt_kwargs(score=10.0 * i, assessment_id=f"a{i}"))
            for i in range(1, 6)
        ])
        assert sorted(r.attempt.attempt_number for r in results) == [1, 2, 3, 4, 5]

        final = await progress_service.get_playlist_progress("u1", "p1")
        assert final.videos["v1"].total_attempts == 5
        assert [a.attempt_number for a in final.videos["v1"].attempts] == [1, 2, 3, 4, 5]
        assert final.version == 5

    @pytest.mark.asyncio
    async def test_two_processes_converge_through_version_checks(self, session_factory, test_settings, clock):
        """Separate services have separate locks, like two worker processes."""
        settings = replace(test_settings, progress_max_retries=20)
        worker_a = ProgressService(session_factory, settings=settings, clock=clock)
        worker_b = ProgressService(session_factory, settings=settings, clock=clock)

        await asyncio.gather(*[
            (worker_a if i % 2 else worker_b).record_attempt(
                "u1", "p1", "v1", **attempt_kwargs(score=20.0, assessment_id=f"a{i}")
            )
            for i in range(6)
        ])

        final = await worker_a.get_playlist_progress("u1", "p1")
        assert [a.attempt_number for a in final.videos["v1"].attempts] == [1, 2, 3, 4, 5, 6]


class TestWatchTimeConvergence:

    @pytest.mark.asyncio
    async def test_concurrent_updates_keep_the_furthest_position(self, progress_service):
        await progress_service.update_video_progress("u1", "p1", VideoUpdate("v1", watch_time=20, total_duration=100))

        await asyncio.gather(
            progress_service.update_video_progress("u1", "p1", VideoUpdate("v1", watch_time=30)),
            progress_service.update_video_progress("u1", "p1", VideoUpdate("v1", watch_time=45)),
        )

        final = await progress_service.get_playlist_progress("u1", "p1")
        assert final.videos["v1"].watch_time == 45
        assert final.videos["v1"].completion_percentage == 45.0
        assert final.version == 3

    @pytest.mark.asyncio
    async def test_two_processes_keep_the_furthest_position(self, session_factory, test_settings, clock):
        settings = replace(test_settings, progress_max_retries=20)
        worker_a = ProgressService(session_factory, settings=settings, clock=clock)
        worker_b = ProgressService(session_factory, settings=settings, clock=clock)
        await worker_a.update_video_progress("u1", "p1", VideoUpdate("v1", watch_time=20, total_duration=100))

        await asyncio.gather(
            worker_a.update_video_progress("u1", "p1", VideoUpdate("v1", watch_time=45)),
            worker_b.update_video_progress("u1", "p1", VideoUpdate("v1", watch_time=30)),
        )

        final = await worker_b.get_playlist_progress("u1", "p1")
        assert final.videos["v1"].watch_time == 45
        assert final.version == 3


class TestConflictsAndTimeouts:

    @pytest.mark.asyncio
    async def test_conflict_is_retried(self, progress_service, monkeypatch):
        original = SqlProgressStore.write
        calls = {"count": 0}

        async def flaky_write(self, user_id, playlist_id, state, expected_version):
            calls["count"] += 1
            if calls["count"] <= 2:
                raise ConflictError("simulated concurrent write", expected_version=expected_version)
            return await original(self, user_id, playlist_id, state, expected_version)

        monkeypatch.setattr(SqlProgressStore, "write", flaky_write)
        result = await progress_service.update_video_progress("u1", "p1", VideoUpdate("v1", watch_time=40))

        assert calls["count"] == 3
        assert result.videos["v1"].watch_time == 40

    @pytest.mark.asyncio
    async def test_conflict_surfaces_after_max_retries(self, progress_service, session_factory, monkeypatch):
        calls = {"count": 0}

        async def always_conflicting(self, user_id, playlist_id, state, expected_version):
            calls["count"] += 1
            raise ConflictError("simulated concurrent write", expected_version=expected_version)

        monkeypatch.setattr(SqlProgressStore, "write", always_conflicting)
        with pytest.raises(ConflictError):
            await progress_service.record_attempt("u1", "p1", "v1", **attempt_kwargs())

        assert calls["count"] == progress_service.settings.progress_max_retries + 1
        assert await ledger_attempts(session_factory, "u1", "v1") == []

    @pytest.mark.asyncio
    async def test_timeout_rolls_back_everything(self, session_factory, test_settings, clock, monkeypatch):
        service = ProgressService(
            session_factory,
            settings=replace(test_settings, store_timeout_seconds=0.05),
            clock=clock
        )

        async def stalled_write(self, user_id, playlist_id, state, expected_version):
            await asyncio.sleep(1)

        monkeypatch.setattr(SqlProgressStore, "write", stalled_write)
        with pytest.raises(StoreUnavailableError) as exc:
            await service.record_attempt("u1", "p1", "v1", **attempt_kwargs())
        assert exc.value.retryable is True
        monkeypatch.undo()

        assert await ledger_attempts(session_factory, "u1", "v1") == []
        with pytest.raises(NotFoundError):
            await service.get_playlist_progress("u1", "p1")

        recorded = await service.record_attempt("u1", "p1", "v1", **attempt_kwargs())
        assert recorded.attempt.attempt_number == 1


class TestCompletionListeners:

    @pytest.mark.asyncio
    async def test_listener_fires_once_per_transition(self, session_factory, test_settings, clock):
        completed = []

        async def on_complete(playlist):
            completed.append((playlist.playlist_id, playlist.completed_at))

        service = ProgressService(session_factory, settings=test_settings, clock=clock, listeners=[on_complete])
        await service.sync_playlist_videos("u1", "p1", [VideoUpdate("v1"), VideoUpdate("v2")])
        await service.update_video_progress("u1", "p1", VideoUpdate("v1", is_completed=True))
        assert completed == []

        await service.update_video_progress("u1", "p1", VideoUpdate("v2", is_completed=True))
        await service.update_video_progress("u1", "p1", VideoUpdate("v2", watch_time=10))
        assert len(completed) == 1
        assert completed[0][0] == "p1"
        assert completed[0][1] is not None

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_undo_progress(self, session_factory, test_settings, clock):
        async def broken(playlist):
            raise RuntimeError("certificate service down")

        service = ProgressService(session_factory, settings=test_settings, clock=clock)
        service.add_completion_listener(broken)
        result = await service.update_video_progress("u1", "p1", VideoUpdate("v1", is_completed=True))

        assert result.is_completed is True
        stored = await service.get_playlist_progress("u1", "p1")
        assert stored.is_completed is True
