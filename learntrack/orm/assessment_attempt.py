"""
learntrack/orm/assessment_attempt.py
AssessmentAttemptRecord - append-only ledger of assessment attempts

Every submitted assessment for a video is recorded here:
- One row per (user, video, attempt_number)
- attempt_number starts at 1 and grows by exactly one per attempt
- Rows are never updated or deleted (audit trail is permanent)

The per-video summaries in PlaylistProgress (bestScore, averageScore,
totalAttempts) are always recomputed from these rows.
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, Index, UniqueConstraint

from learntrack.orm.base import BaseModel


class AssessmentAttemptRecord(BaseModel):
    __tablename__ = "assessment_attempts"

    user_id = Column(String(64), nullable=False, index=True)
    video_id = Column(String(64), nullable=False, index=True)
    playlist_id = Column(String(64), nullable=True, comment="Playlist the attempt was submitted from")

    attempt_number = Column(Integer, nullable=False)
    test_score = Column(Float, nullable=False)
    cli_value = Column(Float, nullable=False)
    cli_classification = Column(String(32), nullable=False)
    confidence = Column(Float, nullable=False)
    time_spent = Column(Float, nullable=False, comment="Seconds spent on the assessment")
    completed_at = Column(DateTime, nullable=False)
    assessment_id = Column(String(64), nullable=False, index=True)

    __table_args__ = (
        # Duplicate attempt numbers are rejected by the database as well
        UniqueConstraint(
            "user_id",
            "video_id",
            "attempt_number",
            name="uq_attempt_user_video_number"
        ),
        Index("ix_attempt_user_video", "user_id", "video_id"),
    )

    def __repr__(self):
        return (
            f"<AssessmentAttemptRecord(user_id={self.user_id}, "
            f"video_id={self.video_id}, attempt={self.attempt_number}, "
            f"score={self.test_score})>"
        )
