"""
learntrack/routes/dependencies.py
Service providers for the routers (overridable in tests via app.dependency_overrides)
"""
import logging
from typing import Optional

from learntrack.config.settings import settings
from learntrack.database import AsyncSessionLocal
from learntrack.services.progress_state import PlaylistProgress
from learntrack.services.progress_service import ProgressService
from learntrack.services.proctoring_service import ProctoringService

logger = logging.getLogger(__name__)

_progress_service: Optional[ProgressService] = None
_proctoring_service: Optional[ProctoringService] = None


async def log_playlist_completed(playlist: PlaylistProgress):
    """Completion hook; certificate issuance subscribes to this event downstream."""
    logger.info(
        f"[CERTIFICATE ELIGIBLE] user={playlist.user_id} playlist={playlist.playlist_id} "
        f"completed_at={playlist.completed_at} average_score={playlist.average_score}"
    )


def get_progress_service() -> ProgressService:
    global _progress_service
    if _progress_service is None:
        _progress_service = ProgressService(
            AsyncSessionLocal,
            settings=settings,
            listeners=[log_playlist_completed]
        )
    return _progress_service


def get_proctoring_service() -> ProctoringService:
    global _proctoring_service
    if _proctoring_service is None:
        _proctoring_service = ProctoringService(AsyncSessionLocal, settings=settings)
    return _proctoring_service
