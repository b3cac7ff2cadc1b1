"""
learntrack/services/progress_state.py
Value types shared by the progress components.

AssessmentAttempt is immutable. VideoProgress and PlaylistProgress are plain
dataclasses; the tracker and aggregator never mutate the instances they are
given and always return fresh copies.

to_dict()/from_dict() produce the JSON document stored per (user, playlist).
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class CLIClassification(str, Enum):
    """Cognitive load label attached to an attempt by the external CLI scorer."""
    LOW = "Low Load"
    MODERATE = "Moderate Load"
    HIGH = "High Load"


def _dt_to_str(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _str_to_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class AssessmentAttempt:
    attempt_number: int
    test_score: float
    cli_value: float
    cli_classification: str
    confidence: float
    time_spent: float
    completed_at: datetime
    assessment_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_number": self.attempt_number,
            "test_score": self.test_score,
            "cli_value": self.cli_value,
            "cli_classification": self.cli_classification,
            "confidence": self.confidence,
            "time_spent": self.time_spent,
            "completed_at": _dt_to_str(self.completed_at),
            "assessment_id": self.assessment_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssessmentAttempt":
        return cls(
            attempt_number=data["attempt_number"],
            test_score=data["test_score"],
            cli_value=data["cli_value"],
            cli_classification=data["cli_classification"],
            confidence=data["confidence"],
            time_spent=data["time_spent"],
            completed_at=_str_to_dt(data["completed_at"]),
            assessment_id=data["assessment_id"],
        )


@dataclass(frozen=True)
class VideoUpdate:
    """
    Partial update for one video. None means "no change".

    Attempt and score fields are absent: they come from the attempt ledger.
    """
    video_id: str
    title: Optional[str] = None
    thumbnail: Optional[str] = None
    watch_time: Optional[float] = None
    total_duration: Optional[float] = None
    is_completed: Optional[bool] = None
    completion_percentage: Optional[float] = None


@dataclass
class VideoProgress:
    video_id: str
    title: str = ""
    thumbnail: str = ""
    is_completed: bool = False
    watch_time: float = 0.0
    total_duration: float = 0.0
    completion_percentage: float = 0.0
    attempts: List[AssessmentAttempt] = field(default_factory=list)
    best_score: float = 0.0
    average_score: float = 0.0
    total_attempts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "video_id": self.video_id,
            "title": self.title,
            "thumbnail": self.thumbnail,
            "is_completed": self.is_completed,
            "watch_time": self.watch_time,
            "total_duration": self.total_duration,
            "completion_percentage": self.completion_percentage,
            "attempts": [a.to_dict() for a in self.attempts],
            "best_score": self.best_score,
            "average_score": self.average_score,
            "total_attempts": self.total_attempts,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VideoProgress":
        return cls(
            video_id=data["video_id"],
            title=data.get("title", ""),
            thumbnail=data.get("thumbnail", ""),
            is_completed=data.get("is_completed", False),
            watch_time=data.get("watch_time", 0.0),
            total_duration=data.get("total_duration", 0.0),
            completion_percentage=data.get("completion_percentage", 0.0),
            attempts=[AssessmentAttempt.from_dict(a) for a in data.get("attempts", [])],
            best_score=data.get("best_score", 0.0),
            average_score=data.get("average_score", 0.0),
            total_attempts=data.get("total_attempts", 0),
        )


@dataclass
class PlaylistMeta:
    title: Optional[str] = None
    thumbnail: Optional[str] = None


@dataclass
class PlaylistProgress:
    user_id: str
    playlist_id: str
    id: Optional[int] = None
    title: str = "Untitled Playlist"
    thumbnail: str = ""
    videos: Dict[str, VideoProgress] = field(default_factory=dict)
    overall_progress: float = 0.0
    completed_videos: int = 0
    total_videos: int = 0
    average_score: float = 0.0
    total_time_spent: float = 0.0
    last_accessed: Optional[datetime] = None
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    # compare-and-swap token of the stored document, 0 = never stored
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Storage document. id and version live on the row, not in the document."""
        return {
            "user_id": self.user_id,
            "playlist_id": self.playlist_id,
            "title": self.title,
            "thumbnail": self.thumbnail,
            "videos": [v.to_dict() for v in self.videos.values()],
            "overall_progress": self.overall_progress,
            "completed_videos": self.completed_videos,
            "total_videos": self.total_videos,
            "average_score": self.average_score,
            "total_time_spent": self.total_time_spent,
            "last_accessed": _dt_to_str(self.last_accessed),
            "is_completed": self.is_completed,
            "completed_at": _dt_to_str(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], id: Optional[int] = None, version: int = 0) -> "PlaylistProgress":
        videos = [VideoProgress.from_dict(v) for v in data.get("videos", [])]
        return cls(
            id=id,
            user_id=data["user_id"],
            playlist_id=data["playlist_id"],
            title=data.get("title", "Untitled Playlist"),
            thumbnail=data.get("thumbnail", ""),
            videos={v.video_id: v for v in videos},
            overall_progress=data.get("overall_progress", 0.0),
            completed_videos=data.get("completed_videos", 0),
            total_videos=data.get("total_videos", 0),
            average_score=data.get("average_score", 0.0),
            total_time_spent=data.get("total_time_spent", 0.0),
            last_accessed=_str_to_dt(data.get("last_accessed")),
            is_completed=data.get("is_completed", False),
            completed_at=_str_to_dt(data.get("completed_at")),
            version=version,
        )


@dataclass
class ProgressStats:
    total_playlists: int = 0
    completed_playlists: int = 0
    total_videos: int = 0
    completed_videos: int = 0
    average_score: float = 0.0
    total_time_spent: float = 0.0
    recent_activity: List[PlaylistProgress] = field(default_factory=list)
