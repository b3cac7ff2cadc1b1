"""
learntrack/services/playlist_aggregator.py
Playlist/Course Aggregator - rolls video summaries up to the playlist

RECOMPUTE ORDER (after every upsert):
1. total_videos = number of videos
2. completed_videos = videos with is_completed
3. overall_progress = mean completion_percentage (partial watching counts),
   or duration-weighted mean when configured
4. average_score = mean video average_score over videos with attempts
   (unattempted videos are left out, not counted as zero)
5. total_time_spent = sum of watch_time
6. is_completed = completed_videos == total_videos > 0

COMPLETION:
Videos are sticky-complete, so completed_videos only drops relative to
total_videos when new videos are added. A completed playlist that grows is
reopened: is_completed goes back to False and completed_at is cleared, and
completed_at is stamped again the next time every video is complete.
"""
import copy
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from learntrack.config.settings import WEIGHTING_DURATION, WEIGHTING_UNWEIGHTED
from learntrack.exceptions import ValidationError
from learntrack.services.progress_state import (
    AssessmentAttempt, PlaylistMeta, PlaylistProgress, VideoUpdate
)
from learntrack.services.video_progress_tracker import apply_update, new_video

logger = logging.getLogger(__name__)

VALID_WEIGHTINGS = (WEIGHTING_UNWEIGHTED, WEIGHTING_DURATION)


def _overall_progress(playlist: PlaylistProgress, weighting: str) -> float:
    videos = list(playlist.videos.values())
    if not videos:
        return 0.0
    if weighting == WEIGHTING_DURATION:
        total_duration = sum(v.total_duration for v in videos)
        if total_duration > 0:
            weighted = sum(v.completion_percentage * v.total_duration for v in videos)
            return round(weighted / total_duration, 2)
    return round(sum(v.completion_percentage for v in videos) / len(videos), 2)


def recompute(
    playlist: PlaylistProgress,
    now: Optional[datetime] = None,
    weighting: str = WEIGHTING_UNWEIGHTED
) -> PlaylistProgress:
    """Refresh the derived playlist fields in place and return the playlist."""
    if weighting not in VALID_WEIGHTINGS:
        raise ValidationError(
            f"Unknown overall progress weighting: {weighting}",
            field="weighting",
            constraint=f"one of {', '.join(VALID_WEIGHTINGS)}"
        )
    now = now or datetime.utcnow()
    videos = list(playlist.videos.values())

    playlist.total_videos = len(videos)
    playlist.completed_videos = sum(1 for v in videos if v.is_completed)
    playlist.overall_progress = _overall_progress(playlist, weighting)

    scored = [v.average_score for v in videos if v.total_attempts > 0]
    playlist.average_score = round(sum(scored) / len(scored), 2) if scored else 0.0
    playlist.total_time_spent = sum(v.watch_time for v in videos)

    was_completed = playlist.is_completed
    playlist.is_completed = playlist.total_videos > 0 and playlist.completed_videos == playlist.total_videos
    if playlist.is_completed and not was_completed:
        playlist.completed_at = now
        logger.info(f"[PLAYLIST COMPLETED] user={playlist.user_id} playlist={playlist.playlist_id}")
    elif was_completed and not playlist.is_completed:
        playlist.completed_at = None
        logger.info(
            f"[PLAYLIST REOPENED] user={playlist.user_id} playlist={playlist.playlist_id} "
            f"completed={playlist.completed_videos}/{playlist.total_videos}"
        )

    playlist.last_accessed = now
    return playlist


def ensure_metadata(playlist: PlaylistProgress, meta: Optional[PlaylistMeta]) -> PlaylistProgress:
    if meta is None:
        return playlist
    if meta.title:
        playlist.title = meta.title
    if meta.thumbnail:
        playlist.thumbnail = meta.thumbnail
    return playlist


def apply_video_list(
    playlist: PlaylistProgress,
    videos: Sequence[VideoUpdate],
    meta: Optional[PlaylistMeta] = None,
    attempts_by_video: Optional[Dict[str, List[AssessmentAttempt]]] = None,
    now: Optional[datetime] = None,
    weighting: str = WEIGHTING_UNWEIGHTED,
    pass_score: Optional[float] = None
) -> PlaylistProgress:
    """
    Upsert a list of video updates and recompute the playlist.

    Unknown video ids are appended (insertion order is playlist order),
    known ones are merged through the video tracker. The input playlist is
    not modified.

    Args:
        playlist: Current state
        videos: One VideoUpdate per video
        meta: Optional playlist title/thumbnail
        attempts_by_video: Ledger attempts keyed by video id
        now: Clock reading for last_accessed / completed_at
        weighting: "unweighted" or "duration" for overall_progress
        pass_score: Forwarded to the video tracker

    Returns:
        New PlaylistProgress
    """
    attempts_by_video = attempts_by_video or {}
    updated = copy.deepcopy(playlist)
    ensure_metadata(updated, meta)

    for update in videos:
        current = updated.videos.get(update.video_id) or new_video(update.video_id)
        updated.videos[update.video_id] = apply_update(
            current,
            update,
            attempts=attempts_by_video.get(update.video_id),
            pass_score=pass_score
        )

    return recompute(updated, now=now, weighting=weighting)


def apply_video_update(
    playlist: PlaylistProgress,
    update: VideoUpdate,
    attempts: Optional[List[AssessmentAttempt]] = None,
    now: Optional[datetime] = None,
    weighting: str = WEIGHTING_UNWEIGHTED,
    pass_score: Optional[float] = None
) -> PlaylistProgress:
    """Single-video form of apply_video_list."""
    attempts_by_video = {update.video_id: attempts} if attempts is not None else None
    return apply_video_list(
        playlist,
        [update],
        attempts_by_video=attempts_by_video,
        now=now,
        weighting=weighting,
        pass_score=pass_score
    )
