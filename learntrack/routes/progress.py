"""
learntrack/routes/progress.py
Playlist progress API

Thin layer over ProgressService: parse camelCase bodies, call the service,
wrap the result in {success, data}. Errors are rendered by the handlers in
learntrack/middleware/error_handler.py.

Identity comes from the path; authentication happens upstream.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, status

from learntrack.routes.dependencies import get_progress_service
from learntrack.schemas.progress import (
    AttemptEnvelope,
    AttemptOut,
    AttemptRequest,
    PlaylistEnvelope,
    PlaylistListEnvelope,
    PlaylistMetaRequest,
    PlaylistProgressOut,
    ProgressStatsOut,
    RecordedAttemptOut,
    StatsEnvelope,
    SyncVideosRequest,
    VideoEnvelope,
    VideoPatchRequest,
    VideoProgressOut,
)
from learntrack.services.progress_service import ProgressService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/playlist-progress/users/{user_id}", tags=["Playlist Progress"])


@router.get("", response_model=PlaylistListEnvelope)
async def list_user_progress(user_id: str, service: ProgressService = Depends(get_progress_service)):
    """All playlists of a user, most recently accessed first."""
    playlists = await service.list_user_progress(user_id)
    return PlaylistListEnvelope(data=[PlaylistProgressOut.from_domain(p) for p in playlists])


@router.get("/stats", response_model=StatsEnvelope)
async def get_user_stats(user_id: str, service: ProgressService = Depends(get_progress_service)):
    stats = await service.get_user_stats(user_id)
    return StatsEnvelope(data=ProgressStatsOut.from_domain(stats))


@router.post("/playlists/{playlist_id}", response_model=PlaylistEnvelope)
async def get_or_create_playlist(
    user_id: str,
    playlist_id: str,
    body: Optional[PlaylistMetaRequest] = None,
    service: ProgressService = Depends(get_progress_service)
):
    meta = body.to_domain() if body else None
    playlist = await service.get_or_create_playlist(user_id, playlist_id, meta)
    return PlaylistEnvelope(data=PlaylistProgressOut.from_domain(playlist))


@router.get("/playlists/{playlist_id}", response_model=PlaylistEnvelope)
async def get_playlist_progress(
    user_id: str,
    playlist_id: str,
    service: ProgressService = Depends(get_progress_service)
):
    playlist = await service.get_playlist_progress(user_id, playlist_id)
    return PlaylistEnvelope(data=PlaylistProgressOut.from_domain(playlist))


@router.put("/playlists/{playlist_id}/videos", response_model=PlaylistEnvelope)
async def sync_playlist_videos(
    user_id: str,
    playlist_id: str,
    body: SyncVideosRequest,
    service: ProgressService = Depends(get_progress_service)
):
    """Upsert the playlist's videos (unknown ids are added, known ones merged)."""
    playlist = await service.sync_playlist_videos(
        user_id,
        playlist_id,
        [v.to_domain() for v in body.videos],
        meta=body.meta()
    )
    return PlaylistEnvelope(data=PlaylistProgressOut.from_domain(playlist))


@router.get("/playlists/{playlist_id}/videos/{video_id}", response_model=VideoEnvelope)
async def get_video_progress(
    user_id: str,
    playlist_id: str,
    video_id: str,
    service: ProgressService = Depends(get_progress_service)
):
    video = await service.get_video_progress(user_id, playlist_id, video_id)
    return VideoEnvelope(data=VideoProgressOut.from_domain(video))


@router.patch("/playlists/{playlist_id}/videos/{video_id}", response_model=PlaylistEnvelope)
async def update_video_progress(
    user_id: str,
    playlist_id: str,
    video_id: str,
    body: VideoPatchRequest,
    service: ProgressService = Depends(get_progress_service)
):
    playlist = await service.update_video_progress(user_id, playlist_id, body.to_domain(video_id))
    return PlaylistEnvelope(data=PlaylistProgressOut.from_domain(playlist))


@router.post(
    "/playlists/{playlist_id}/videos/{video_id}/attempts",
    response_model=AttemptEnvelope,
    status_code=status.HTTP_201_CREATED
)
async def record_attempt(
    user_id: str,
    playlist_id: str,
    video_id: str,
    body: AttemptRequest,
    service: ProgressService = Depends(get_progress_service)
):
    recorded = await service.record_attempt(
        user_id,
        playlist_id,
        video_id,
        test_score=body.test_score,
        cli_value=body.cli_value,
        cli_classification=body.cli_classification,
        confidence=body.confidence,
        time_spent=body.time_spent,
        assessment_id=body.assessment_id,
        completed_at=body.completed_at,
        attempt_number=body.attempt_number,
    )
    return AttemptEnvelope(data=RecordedAttemptOut(
        attempt=AttemptOut.from_domain(recorded.attempt),
        playlist=PlaylistProgressOut.from_domain(recorded.playlist),
    ))
