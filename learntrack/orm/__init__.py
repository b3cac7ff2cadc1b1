from .base import Base

from .assessment_attempt import AssessmentAttemptRecord
from .playlist_progress import PlaylistProgressRecord
from .proctoring import TelemetryBatch, ProctoringResultRecord

__all__ = [
    "Base",
    "AssessmentAttemptRecord",
    "PlaylistProgressRecord",
    "TelemetryBatch",
    "ProctoringResultRecord",
]
