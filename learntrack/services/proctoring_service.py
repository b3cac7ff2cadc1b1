"""
learntrack/services/proctoring_service.py
Proctoring Session Service - telemetry accumulation and result audit

LIFECYCLE (per assessment_id):
    submit_metrics  -> append a telemetry batch (any number of times)
    preview         -> score the aggregate so far, nothing persisted
    finalize        -> aggregate, score, persist the ProctoringResult once
    get_result      -> read the persisted result

A finalized assessment is closed: later batches are rejected and repeated
finalize calls return the stored result unchanged.
"""
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from learntrack.config.settings import Settings, settings as default_settings
from learntrack.exceptions import ConflictError, NotFoundError, ValidationError
from learntrack.orm.proctoring import ProctoringResultRecord, TelemetryBatch
from learntrack.services.integrity_scoring import (
    ProctoringConfig, ProctoringResult, TelemetrySnapshot, aggregate_snapshots, score
)
from learntrack.services.progress_service import KeyedLocks, run_transaction

logger = logging.getLogger(__name__)


def load_config(settings: Settings) -> ProctoringConfig:
    """Rule table from PROCTORING_RULES_FILE when set, defaults otherwise."""
    if settings.proctoring_rules_file:
        logger.info(f"Loading proctoring rules from {settings.proctoring_rules_file}")
        return ProctoringConfig.from_file(
            settings.proctoring_rules_file,
            low_bound=settings.proctoring_low_bound,
            mid_bound=settings.proctoring_mid_bound,
        )
    return ProctoringConfig(low_bound=settings.proctoring_low_bound, mid_bound=settings.proctoring_mid_bound)


def _to_result(row: ProctoringResultRecord) -> ProctoringResult:
    return ProctoringResult(
        assessment_id=row.assessment_id,
        integrity_score=row.integrity_score,
        flags=tuple(row.flags),
        metrics=dict(row.metrics),
        severity=row.severity,
    )


async def _stored_result(db: AsyncSession, assessment_id: str) -> Optional[ProctoringResult]:
    result = await db.execute(
        select(ProctoringResultRecord).where(ProctoringResultRecord.assessment_id == assessment_id)
    )
    row = result.scalar_one_or_none()
    return _to_result(row) if row else None


async def _batches(db: AsyncSession, assessment_id: str) -> List[TelemetrySnapshot]:
    result = await db.execute(
        select(TelemetryBatch)
        .where(TelemetryBatch.assessment_id == assessment_id)
        .order_by(TelemetryBatch.id.asc())
    )
    return [TelemetrySnapshot.from_payload(row.metrics) for row in result.scalars().all()]


class ProctoringService:

    def __init__(
        self,
        session_factory: async_sessionmaker,
        config: Optional[ProctoringConfig] = None,
        settings: Optional[Settings] = None
    ):
        self.session_factory = session_factory
        self.settings = settings or default_settings
        self.config = config or load_config(self.settings)
        self.locks = KeyedLocks()

    async def _transaction(self, work):
        return await run_transaction(self.session_factory, work, self.settings.store_timeout_seconds)

    async def submit_metrics(self, assessment_id: str, snapshot: TelemetrySnapshot) -> int:
        """
        Append one telemetry batch.

        Returns:
            Number of batches recorded for the assessment so far

        Raises:
            ConflictError: assessment already finalized
        """
        if not assessment_id:
            raise ValidationError("assessmentId is required", field="assessmentId", constraint="required")

        async def work(db: AsyncSession):
            if await _stored_result(db, assessment_id) is not None:
                raise ConflictError(
                    f"Assessment {assessment_id} is already finalized",
                    details={"assessment_id": assessment_id}
                )
            db.add(TelemetryBatch(assessment_id=assessment_id, metrics=snapshot.to_payload()))
            await db.flush()
            return len(await _batches(db, assessment_id))

        async with self.locks.hold(assessment_id):
            count = await self._transaction(work)
        logger.debug(f"[TELEMETRY RECEIVED] assessment={assessment_id} batches={count}")
        return count

    async def preview(self, assessment_id: str) -> ProctoringResult:
        """Score everything received so far without persisting. A finalized assessment returns its result."""
        async def work(db: AsyncSession):
            stored = await _stored_result(db, assessment_id)
            if stored is not None:
                return stored
            return score(aggregate_snapshots(await _batches(db, assessment_id)), assessment_id, self.config)

        return await self._transaction(work)

    async def finalize(self, assessment_id: str) -> ProctoringResult:
        """
        Score the session and persist the result exactly once.

        An assessment with no telemetry scores as a clean session (100, low).
        """
        async def work(db: AsyncSession):
            stored = await _stored_result(db, assessment_id)
            if stored is not None:
                return stored
            result = score(aggregate_snapshots(await _batches(db, assessment_id)), assessment_id, self.config)
            db.add(ProctoringResultRecord(
                assessment_id=assessment_id,
                integrity_score=result.integrity_score,
                severity=result.severity,
                flags=list(result.flags),
                metrics=result.metrics,
            ))
            try:
                await db.flush()
            except IntegrityError as e:
                raise ConflictError(
                    f"Assessment {assessment_id} was finalized concurrently",
                    details={"assessment_id": assessment_id}
                ) from e
            logger.info(
                f"[PROCTORING FINALIZED] assessment={assessment_id} "
                f"score={result.integrity_score} severity={result.severity}"
            )
            return result

        async with self.locks.hold(assessment_id):
            try:
                return await self._transaction(work)
            except ConflictError:
                # another process finalized first; its result is the one on record
                return await self.get_result(assessment_id)

    async def get_result(self, assessment_id: str) -> ProctoringResult:
        async def work(db: AsyncSession):
            return await _stored_result(db, assessment_id)

        result = await self._transaction(work)
        if result is None:
            raise NotFoundError("Proctoring result", assessment_id)
        return result
