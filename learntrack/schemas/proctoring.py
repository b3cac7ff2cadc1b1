"""
learntrack/schemas/proctoring.py
Pydantic schemas for proctoring telemetry and integrity results
"""
from typing import Dict, List, Optional

from pydantic import ConfigDict

from learntrack.schemas.base import CamelModel
from learntrack.services.integrity_scoring import ProctoringResult, TelemetrySnapshot


class TelemetryRequest(CamelModel):
    """
    One batch of behavioral telemetry. Absent metrics were not measured;
    negative values are clamped to 0 by the scoring engine.

    Used by: POST /api/proctoring/{assessment_id}/metrics
    """
    # newer clients may send metrics this version does not score
    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={
            "example": {
                "offScreenTime": 12,
                "gazeDeviation": 18.5,
                "tabSwitches": 2,
                "pasteEvents": 0
            }
        }
    )

    off_screen_time: Optional[float] = None
    no_face_frames: Optional[float] = None
    total_frames: Optional[float] = None
    gaze_deviation: Optional[float] = None
    avg_key_delay: Optional[float] = None
    paste_events: Optional[float] = None
    backspace_rate: Optional[float] = None
    tab_switches: Optional[float] = None
    copy_events: Optional[float] = None

    def to_domain(self) -> TelemetrySnapshot:
        return TelemetrySnapshot(**self.model_dump())


class ProctoringResultOut(CamelModel):
    assessment_id: Optional[str] = None
    integrity_score: float
    flags: List[str]
    metrics: Dict[str, float]
    severity: str

    @classmethod
    def from_domain(cls, result: ProctoringResult) -> "ProctoringResultOut":
        return cls(
            assessment_id=result.assessment_id,
            integrity_score=result.integrity_score,
            flags=list(result.flags),
            metrics=result.metrics,
            severity=result.severity,
        )


class TelemetryReceipt(CamelModel):
    assessment_id: str
    batches: int


class ResultEnvelope(CamelModel):
    success: bool = True
    data: ProctoringResultOut


class ReceiptEnvelope(CamelModel):
    success: bool = True
    data: TelemetryReceipt
