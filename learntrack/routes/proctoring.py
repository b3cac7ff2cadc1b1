"""
learntrack/routes/proctoring.py
Proctoring API - telemetry intake and integrity results
"""
import logging

from fastapi import APIRouter, Depends, status

from learntrack.routes.dependencies import get_proctoring_service
from learntrack.schemas.proctoring import (
    ProctoringResultOut, ReceiptEnvelope, ResultEnvelope, TelemetryReceipt, TelemetryRequest
)
from learntrack.services.proctoring_service import ProctoringService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/proctoring/{assessment_id}", tags=["Proctoring"])


@router.post("/metrics", response_model=ReceiptEnvelope, status_code=status.HTTP_202_ACCEPTED)
async def submit_metrics(
    assessment_id: str,
    body: TelemetryRequest,
    service: ProctoringService = Depends(get_proctoring_service)
):
    batches = await service.submit_metrics(assessment_id, body.to_domain())
    return ReceiptEnvelope(data=TelemetryReceipt(assessment_id=assessment_id, batches=batches))


@router.get("/preview", response_model=ResultEnvelope)
async def preview(assessment_id: str, service: ProctoringService = Depends(get_proctoring_service)):
    """Score the telemetry received so far; nothing is stored."""
    result = await service.preview(assessment_id)
    return ResultEnvelope(data=ProctoringResultOut.from_domain(result))


@router.post("/finalize", response_model=ResultEnvelope)
async def finalize(assessment_id: str, service: ProctoringService = Depends(get_proctoring_service)):
    result = await service.finalize(assessment_id)
    return ResultEnvelope(data=ProctoringResultOut.from_domain(result))


@router.get("/result", response_model=ResultEnvelope)
async def get_result(assessment_id: str, service: ProctoringService = Depends(get_proctoring_service)):
    result = await service.get_result(assessment_id)
    return ResultEnvelope(data=ProctoringResultOut.from_domain(result))
