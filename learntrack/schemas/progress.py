"""
learntrack/schemas/progress.py
Pydantic schemas for playlist progress, video progress and attempts

All responses use the envelope:
{
    "success": bool,
    "data": {...}
}
Field names are camelCase on the wire.
"""
from dataclasses import asdict
from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_validator

from learntrack.schemas.base import CamelModel, CamelRequest
from learntrack.services.progress_state import (
    AssessmentAttempt, PlaylistMeta, PlaylistProgress, ProgressStats, VideoProgress, VideoUpdate
)


# ================= REQUEST SCHEMAS =================

class PlaylistMetaRequest(CamelRequest):
    """
    Used by: POST /api/playlist-progress/users/{user_id}/playlists/{playlist_id}
    """
    title: Optional[str] = None
    thumbnail: Optional[str] = None

    def to_domain(self) -> PlaylistMeta:
        return PlaylistMeta(title=self.title, thumbnail=self.thumbnail)


class VideoPatchRequest(CamelRequest):
    """
    Partial watch-progress update. Absent fields mean "no change".

    Used by: PATCH .../playlists/{playlist_id}/videos/{video_id}
    """
    title: Optional[str] = None
    thumbnail: Optional[str] = None
    watch_time: Optional[float] = None
    total_duration: Optional[float] = None
    is_completed: Optional[bool] = None
    completion_percentage: Optional[float] = None

    def to_domain(self, video_id: str) -> VideoUpdate:
        return VideoUpdate(video_id=video_id, **self.model_dump())

    class Config:
        json_schema_extra = {
            "example": {
                "watchTime": 312.5,
                "totalDuration": 600,
            }
        }


class VideoSyncItem(VideoPatchRequest):
    video_id: str = Field(..., min_length=1)

    def to_domain(self, video_id: Optional[str] = None) -> VideoUpdate:
        return VideoUpdate(**self.model_dump())


class SyncVideosRequest(CamelRequest):
    """
    Used by: PUT .../playlists/{playlist_id}/videos
    """
    title: Optional[str] = None
    thumbnail: Optional[str] = None
    videos: List[VideoSyncItem]

    def meta(self) -> PlaylistMeta:
        return PlaylistMeta(title=self.title, thumbnail=self.thumbnail)


class AttemptRequest(CamelRequest):
    """
    Assessment attempt for one video. attemptNumber is assigned by the
    server; when sent it must equal the next number.

    Used by: POST .../playlists/{playlist_id}/videos/{video_id}/attempts
    """
    test_score: float
    cli_value: float
    cli_classification: str
    confidence: float
    time_spent: float
    assessment_id: str = Field(..., min_length=1)
    completed_at: Optional[datetime] = None
    attempt_number: Optional[int] = None

    @field_validator('cli_classification')
    @classmethod
    def strip_label(cls, v: str) -> str:
        return v.strip()

    class Config:
        json_schema_extra = {
            "example": {
                "testScore": 85,
                "cliValue": 42.5,
                "cliClassification": "Moderate Load",
                "confidence": 0.82,
                "timeSpent": 540,
                "assessmentId": "asm-7f3a"
            }
        }


# ================= RESPONSE SCHEMAS =================

class AttemptOut(CamelModel):
    attempt_number: int
    test_score: float
    cli_value: float
    cli_classification: str
    confidence: float
    time_spent: float
    completed_at: datetime
    assessment_id: str

    @classmethod
    def from_domain(cls, attempt: AssessmentAttempt) -> "AttemptOut":
        return cls(**asdict(attempt))


class VideoProgressOut(CamelModel):
    video_id: str
    title: str
    thumbnail: str
    is_completed: bool
    watch_time: float
    total_duration: float
    completion_percentage: float
    attempts: List[AttemptOut]
    best_score: float
    average_score: float
    total_attempts: int

    @classmethod
    def from_domain(cls, video: VideoProgress) -> "VideoProgressOut":
        return cls(
            video_id=video.video_id,
            title=video.title,
            thumbnail=video.thumbnail,
            is_completed=video.is_completed,
            watch_time=video.watch_time,
            total_duration=video.total_duration,
            completion_percentage=video.completion_percentage,
            attempts=[AttemptOut.from_domain(a) for a in video.attempts],
            best_score=video.best_score,
            average_score=video.average_score,
            total_attempts=video.total_attempts,
        )


class PlaylistProgressOut(CamelModel):
    id: Optional[int] = None
    user_id: str
    playlist_id: str
    title: str
    thumbnail: str
    videos: List[VideoProgressOut]
    overall_progress: float
    completed_videos: int
    total_videos: int
    average_score: float
    total_time_spent: float
    last_accessed: Optional[datetime] = None
    is_completed: bool
    completed_at: Optional[datetime] = None
    version: int

    @classmethod
    def from_domain(cls, playlist: PlaylistProgress) -> "PlaylistProgressOut":
        return cls(
            id=playlist.id,
            user_id=playlist.user_id,
            playlist_id=playlist.playlist_id,
            title=playlist.title,
            thumbnail=playlist.thumbnail,
            videos=[VideoProgressOut.from_domain(v) for v in playlist.videos.values()],
            overall_progress=playlist.overall_progress,
            completed_videos=playlist.completed_videos,
            total_videos=playlist.total_videos,
            average_score=playlist.average_score,
            total_time_spent=playlist.total_time_spent,
            last_accessed=playlist.last_accessed,
            is_completed=playlist.is_completed,
            completed_at=playlist.completed_at,
            version=playlist.version,
        )


class ProgressStatsOut(CamelModel):
    total_playlists: int
    completed_playlists: int
    total_videos: int
    completed_videos: int
    average_score: float
    total_time_spent: float
    recent_activity: List[PlaylistProgressOut]

    @classmethod
    def from_domain(cls, stats: ProgressStats) -> "ProgressStatsOut":
        return cls(
            total_playlists=stats.total_playlists,
            completed_playlists=stats.completed_playlists,
            total_videos=stats.total_videos,
            completed_videos=stats.completed_videos,
            average_score=stats.average_score,
            total_time_spent=stats.total_time_spent,
            recent_activity=[PlaylistProgressOut.from_domain(p) for p in stats.recent_activity],
        )


class RecordedAttemptOut(CamelModel):
    attempt: AttemptOut
    playlist: PlaylistProgressOut


# ================= ENVELOPES =================

class PlaylistEnvelope(CamelModel):
    success: bool = True
    data: PlaylistProgressOut


class PlaylistListEnvelope(CamelModel):
    success: bool = True
    data: List[PlaylistProgressOut]


class VideoEnvelope(CamelModel):
    success: bool = True
    data: VideoProgressOut


class StatsEnvelope(CamelModel):
    success: bool = True
    data: ProgressStatsOut


class AttemptEnvelope(CamelModel):
    success: bool = True
    data: RecordedAttemptOut
