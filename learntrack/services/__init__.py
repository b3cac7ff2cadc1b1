"""
learntrack/services
Progress aggregation and proctoring-integrity engine.
"""
from learntrack.services.progress_service import ProgressService, RecordedAttempt
from learntrack.services.proctoring_service import ProctoringService

__all__ = [
    "ProgressService",
    "RecordedAttempt",
    "ProctoringService",
]
