"""
learntrack/services/attempt_ledger.py
Attempt Ledger - append-only record of assessment attempts per (user, video)

RULES:
- testScore in [0, 100], confidence in [0, 1], timeSpent >= 0
- cliClassification is one of the CLIClassification labels
- attemptNumber == current max + 1 (no gaps, no duplicates)
- Recorded attempts are never modified or deleted

The caller resolves attemptNumber under the per-(user, playlist)
serialization point held by ProgressService; the unique constraint on the
table catches anyone who does not.
"""
import logging
import math
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from learntrack.exceptions import ConflictError, ValidationError
from learntrack.orm.assessment_attempt import AssessmentAttemptRecord
from learntrack.services.progress_state import AssessmentAttempt, CLIClassification

logger = logging.getLogger(__name__)

VALID_CLI_LABELS = {c.value for c in CLIClassification}


def _check_range(value: float, field: str, low: float, high: Optional[float] = None):
    if value is None or (isinstance(value, float) and math.isnan(value)):
        raise ValidationError(f"{field} is required", field=field, constraint="required")
    if value < low or (high is not None and value > high):
        bound = f"[{low}, {high}]" if high is not None else f">= {low}"
        raise ValidationError(
            f"{field} must be {bound}, got {value}",
            field=field,
            constraint=f"range {bound}"
        )


def validate_attempt(attempt: AssessmentAttempt):
    """Field-level checks that do not need the ledger."""
    if attempt.attempt_number is None or attempt.attempt_number < 1:
        raise ValidationError(
            f"attemptNumber must be a positive integer, got {attempt.attempt_number}",
            field="attemptNumber",
            constraint="positive integer"
        )
    _check_range(attempt.test_score, "testScore", 0, 100)
    _check_range(attempt.confidence, "confidence", 0, 1)
    _check_range(attempt.time_spent, "timeSpent", 0)
    if attempt.cli_classification not in VALID_CLI_LABELS:
        raise ValidationError(
            f"cliClassification must be one of: {', '.join(sorted(VALID_CLI_LABELS))}",
            field="cliClassification",
            constraint="enum"
        )
    if not attempt.assessment_id:
        raise ValidationError("assessmentId is required", field="assessmentId", constraint="required")


def _to_attempt(row: AssessmentAttemptRecord) -> AssessmentAttempt:
    return AssessmentAttempt(
        attempt_number=row.attempt_number,
        test_score=row.test_score,
        cli_value=row.cli_value,
        cli_classification=row.cli_classification,
        confidence=row.confidence,
        time_spent=row.time_spent,
        completed_at=row.completed_at,
        assessment_id=row.assessment_id,
    )


class SqlLedgerStore:
    """Ledger persistence on the caller's session (joins the caller's transaction)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(self, user_id: str, video_id: str, attempt: AssessmentAttempt,
                     playlist_id: str = None) -> AssessmentAttempt:
        row = AssessmentAttemptRecord(
            user_id=user_id,
            video_id=video_id,
            playlist_id=playlist_id,
            attempt_number=attempt.attempt_number,
            test_score=attempt.test_score,
            cli_value=attempt.cli_value,
            cli_classification=attempt.cli_classification,
            confidence=attempt.confidence,
            time_spent=attempt.time_spent,
            completed_at=attempt.completed_at,
            assessment_id=attempt.assessment_id,
        )
        # A duplicate leaves the session unusable; the caller's transaction rolls back
        self.db.add(row)
        try:
            await self.db.flush()
        except IntegrityError as e:
            raise ConflictError(
                f"Attempt {attempt.attempt_number} already recorded for video {video_id}",
                details={"video_id": video_id, "attempt_number": attempt.attempt_number}
            ) from e
        return attempt

    async def list(self, user_id: str, video_id: str) -> List[AssessmentAttempt]:
        result = await self.db.execute(
            select(AssessmentAttemptRecord)
            .where(
                AssessmentAttemptRecord.user_id == user_id,
                AssessmentAttemptRecord.video_id == video_id
            )
            .order_by(AssessmentAttemptRecord.attempt_number.asc())
        )
        return [_to_attempt(row) for row in result.scalars().all()]

    async def list_for_videos(self, user_id: str, video_ids: Iterable[str]) -> Dict[str, List[AssessmentAttempt]]:
        video_ids = list(video_ids)
        grouped: Dict[str, List[AssessmentAttempt]] = {vid: [] for vid in video_ids}
        if not video_ids:
            return grouped
        result = await self.db.execute(
            select(AssessmentAttemptRecord)
            .where(
                AssessmentAttemptRecord.user_id == user_id,
                AssessmentAttemptRecord.video_id.in_(video_ids)
            )
            .order_by(AssessmentAttemptRecord.video_id, AssessmentAttemptRecord.attempt_number.asc())
        )
        for row in result.scalars().all():
            grouped[row.video_id].append(_to_attempt(row))
        return grouped

    async def max_attempt_number(self, user_id: str, video_id: str) -> int:
        result = await self.db.execute(
            select(func.max(AssessmentAttemptRecord.attempt_number)).where(
                AssessmentAttemptRecord.user_id == user_id,
                AssessmentAttemptRecord.video_id == video_id
            )
        )
        return result.scalar() or 0


class AttemptLedger:
    """Validating front of the ledger store."""

    def __init__(self, store: SqlLedgerStore):
        self.store = store

    async def next_attempt_number(self, user_id: str, video_id: str) -> int:
        return await self.store.max_attempt_number(user_id, video_id) + 1

    async def record(self, user_id: str, video_id: str, attempt: AssessmentAttempt,
                     playlist_id: str = None) -> AssessmentAttempt:
        """
        Append one attempt.

        Raises:
            ValidationError: field out of range, or attemptNumber is not max + 1
            ConflictError: another writer recorded the same attemptNumber first
        """
        validate_attempt(attempt)

        expected = await self.next_attempt_number(user_id, video_id)
        if attempt.attempt_number != expected:
            raise ValidationError(
                f"attemptNumber must be {expected} for video {video_id}, got {attempt.attempt_number}",
                field="attemptNumber",
                constraint="sequential",
                details={"expected": expected, "received": attempt.attempt_number}
            )

        recorded = await self.store.append(user_id, video_id, attempt, playlist_id=playlist_id)
        logger.info(
            f"[ATTEMPT RECORDED] user={user_id} video={video_id} "
            f"attempt={attempt.attempt_number} score={attempt.test_score}"
        )
        return recorded

    async def list_attempts(self, user_id: str, video_id: str) -> List[AssessmentAttempt]:
        """Attempts ordered by attemptNumber ascending. Each call returns a new list."""
        return await self.store.list(user_id, video_id)

    async def list_for_videos(self, user_id: str, video_ids: Iterable[str]) -> Dict[str, List[AssessmentAttempt]]:
        return await self.store.list_for_videos(user_id, video_ids)
