"""
learntrack/services/user_stats.py
User Statistics Roll-up - aggregates every playlist a user has touched

Pure function of its input: nothing is read from or written to a store,
and the playlists passed in are not modified. Calling compute_stats twice
on the same input gives identical output.
"""
from datetime import datetime
from typing import List, Sequence

from learntrack.exceptions import ValidationError
from learntrack.services.progress_state import PlaylistProgress, ProgressStats

DEFAULT_RECENT_ACTIVITY_LIMIT = 5


def recent_activity(playlists: Sequence[PlaylistProgress], limit: int) -> List[PlaylistProgress]:
    """Most recently accessed first; ties broken by playlist_id ascending."""
    by_id = sorted(playlists, key=lambda p: p.playlist_id)
    # stable sort keeps the playlist_id order among equal timestamps
    ordered = sorted(by_id, key=lambda p: p.last_accessed or datetime.min, reverse=True)
    return ordered[:limit]


def compute_stats(
    playlists: Sequence[PlaylistProgress],
    recent_limit: int = DEFAULT_RECENT_ACTIVITY_LIMIT
) -> ProgressStats:
    """
    Aggregate a user's playlists.

    averageScore is the mean of playlist averages over playlists that have
    at least one scored video; playlists without attempts are left out.
    """
    if recent_limit < 0:
        raise ValidationError(
            f"recent activity limit must be >= 0, got {recent_limit}",
            field="recentActivityLimit",
            constraint=">= 0"
        )
    playlists = list(playlists)

    scored = [
        p.average_score for p in playlists
        if any(v.total_attempts > 0 for v in p.videos.values())
    ]

    return ProgressStats(
        total_playlists=len(playlists),
        completed_playlists=sum(1 for p in playlists if p.is_completed),
        total_videos=sum(p.total_videos for p in playlists),
        completed_videos=sum(p.completed_videos for p in playlists),
        average_score=round(sum(scored) / len(scored), 2) if scored else 0.0,
        total_time_spent=sum(p.total_time_spent for p in playlists),
        recent_activity=recent_activity(playlists, recent_limit),
    )
