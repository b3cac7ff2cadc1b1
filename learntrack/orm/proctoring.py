"""
learntrack/orm/proctoring.py
Proctoring telemetry batches and integrity results

TelemetryBatch:
- One row per metrics submission during an assessment session
- Aggregated at scoring time

ProctoringResultRecord:
- Written once per assessment when the session is finalized
- Never updated afterwards (kept for audit/dispute resolution)
"""
from sqlalchemy import Column, String, Float, JSON, UniqueConstraint

from learntrack.orm.base import BaseModel


class TelemetryBatch(BaseModel):
    __tablename__ = "proctoring_telemetry_batches"

    assessment_id = Column(String(64), nullable=False, index=True)
    metrics = Column(JSON, nullable=False, comment="Snapshot payload, camelCase keys, absent metrics omitted")


class ProctoringResultRecord(BaseModel):
    __tablename__ = "proctoring_results"

    assessment_id = Column(String(64), nullable=False)
    integrity_score = Column(Float, nullable=False)
    severity = Column(String(16), nullable=False)
    flags = Column(JSON, nullable=False)
    metrics = Column(JSON, nullable=False)

    __table_args__ = (
        UniqueConstraint("assessment_id", name="uq_proctoring_result_assessment"),
    )
