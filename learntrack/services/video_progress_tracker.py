"""
learntrack/services/video_progress_tracker.py
Video Progress Tracker - merges partial updates into a VideoProgress

MERGE RULES (per field):
- watch_time: max(existing, incoming); a scrubbed or replayed player can
  never move it backwards
- completion_percentage (incoming): only a playback-position hint, converted
  to seconds against total_duration and merged like watch_time
- total_duration: replaced when supplied, percentage recomputed on the new
  basis, is_completed untouched
- is_completed: sticky, an incoming False is ignored
- attempts / best_score / average_score / total_attempts: recomputed from
  the ledger attempts, never copied from the caller

apply_update is pure: it returns a new VideoProgress and leaves its inputs
alone, so concurrent merges of the same updates in any order converge.
"""
import math
from dataclasses import replace
from typing import List, Optional, Sequence

from learntrack.exceptions import ValidationError
from learntrack.services.progress_state import AssessmentAttempt, VideoProgress, VideoUpdate


def _non_negative(value: Optional[float], field: str):
    if value is None:
        return
    if isinstance(value, float) and math.isnan(value):
        raise ValidationError(f"{field} must be a number", field=field, constraint="number")
    if value < 0:
        raise ValidationError(f"{field} must be >= 0, got {value}", field=field, constraint=">= 0")


def validate_update(update: VideoUpdate):
    if not update.video_id:
        raise ValidationError("videoId is required", field="videoId", constraint="required")
    _non_negative(update.watch_time, "watchTime")
    _non_negative(update.total_duration, "totalDuration")
    if update.completion_percentage is not None:
        _non_negative(update.completion_percentage, "completionPercentage")
        if update.completion_percentage > 100:
            raise ValidationError(
                f"completionPercentage must be <= 100, got {update.completion_percentage}",
                field="completionPercentage",
                constraint="[0, 100]"
            )


def completion_percentage(watch_time: float, total_duration: float, is_completed: bool) -> float:
    if is_completed:
        return 100.0
    if not total_duration:
        return 0.0
    return round(min(100.0, watch_time / total_duration * 100), 2)


def summarize_attempts(attempts: Sequence[AssessmentAttempt]):
    """(best_score, average_score, total_attempts) over the ledger attempts."""
    if not attempts:
        return 0.0, 0.0, 0
    scores = [a.test_score for a in attempts]
    return max(scores), round(sum(scores) / len(scores), 2), len(scores)


def new_video(video_id: str) -> VideoProgress:
    return VideoProgress(video_id=video_id)


def apply_update(
    video: VideoProgress,
    update: VideoUpdate,
    attempts: Optional[Sequence[AssessmentAttempt]] = None,
    pass_score: Optional[float] = None
) -> VideoProgress:
    """
    Merge one partial update into a video.

    Args:
        video: Current state (not modified)
        update: Partial update, None fields mean "no change"
        attempts: Ledger attempts for this video; None keeps the already
            derived attempt list
        pass_score: Attempts scoring at least this mark the video completed

    Returns:
        New VideoProgress

    Raises:
        ValidationError: malformed update
    """
    validate_update(update)
    if update.video_id != video.video_id:
        raise ValidationError(
            f"Update for video {update.video_id} applied to video {video.video_id}",
            field="videoId",
            constraint="matches target video"
        )

    total_duration = video.total_duration
    if update.total_duration is not None:
        total_duration = float(update.total_duration)

    watch_time = video.watch_time
    if update.watch_time is not None:
        watch_time = max(watch_time, float(update.watch_time))
    if update.completion_percentage is not None and total_duration > 0:
        watch_time = max(watch_time, update.completion_percentage / 100 * total_duration)

    ledger: List[AssessmentAttempt] = sorted(
        attempts if attempts is not None else video.attempts,
        key=lambda a: a.attempt_number
    )
    best_score, average_score, total_attempts = summarize_attempts(ledger)

    is_completed = video.is_completed or update.is_completed is True
    if pass_score is not None and any(a.test_score >= pass_score for a in ledger):
        is_completed = True

    return replace(
        video,
        title=update.title if update.title else video.title,
        thumbnail=update.thumbnail if update.thumbnail else video.thumbnail,
        is_completed=is_completed,
        watch_time=watch_time,
        total_duration=total_duration,
        completion_percentage=completion_percentage(watch_time, total_duration, is_completed),
        attempts=ledger,
        best_score=best_score,
        average_score=average_score,
        total_attempts=total_attempts,
    )
