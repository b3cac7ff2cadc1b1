"""
learntrack/orm/playlist_progress.py
PlaylistProgressRecord - versioned progress document per (user, playlist)

The whole PlaylistProgress aggregate (videos included) is stored as a single
JSON document and replaced atomically. `version` is the compare-and-swap
token: a write only succeeds when the stored version still equals the
version the writer read.

last_accessed and is_completed are copied out of the document so that
per-user listings can be ordered and filtered in SQL.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, Index, UniqueConstraint

from learntrack.orm.base import BaseModel


class PlaylistProgressRecord(BaseModel):
    __tablename__ = "playlist_progress"

    user_id = Column(String(64), nullable=False, index=True)
    playlist_id = Column(String(128), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    document = Column(JSON, nullable=False)

    last_accessed = Column(DateTime, nullable=True)
    is_completed = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("user_id", "playlist_id", name="uq_progress_user_playlist"),
        Index("ix_progress_user_last_accessed", "user_id", "last_accessed"),
    )

    def __repr__(self):
        return (
            f"<PlaylistProgressRecord(user_id={self.user_id}, "
            f"playlist_id={self.playlist_id}, version={self.version})>"
        )
