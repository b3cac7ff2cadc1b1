"""
learntrack/tests/test_proctoring_service.py
ProctoringService: telemetry accumulation, preview, one-time finalization
"""
import asyncio
import json
from dataclasses import replace

import pytest
from sqlalchemy import func, select

from learntrack.exceptions import ConflictError, NotFoundError, ValidationError
from learntrack.orm.proctoring import ProctoringResultRecord
from learntrack.services.integrity_scoring import TelemetrySnapshot
from learntrack.services.proctoring_service import ProctoringService, load_config


@pytest.mark.asyncio
async def test_batches_are_aggregated_for_preview(proctoring_service):
    assert await proctoring_service.submit_metrics("asm-1", TelemetrySnapshot(tab_switches=6)) == 1
    assert await proctoring_service.submit_metrics("asm-1", TelemetrySnapshot(tab_switches=6, paste_events=1)) == 2

    preview = await proctoring_service.preview("asm-1")
    assert preview.metrics["tabSwitches"] == 12
    assert preview.flags == ("PASTE_DETECTED", "EXCESSIVE_TAB_SWITCHING")
    assert preview.severity == "high"

    with pytest.raises(NotFoundError):
        await proctoring_service.get_result("asm-1")


@pytest.mark.asyncio
async def test_batches_are_scoped_per_assessment(proctoring_service):
    await proctoring_service.submit_metrics("asm-1", TelemetrySnapshot(copy_events=2))
    preview = await proctoring_service.preview("asm-2")
    assert preview.integrity_score == 100.0
    assert preview.flags == ()


@pytest.mark.asyncio
async def test_finalize_is_idempotent_and_immutable(proctoring_service):
    await proctoring_service.submit_metrics("asm-1", TelemetrySnapshot(gaze_deviation=45))
    first = await proctoring_service.finalize("asm-1")
    assert first.flags == ("UNUSUAL_GAZE_PATTERN",)

    with pytest.raises(ConflictError):
        await proctoring_service.submit_metrics("asm-1", TelemetrySnapshot(paste_events=3))

    second = await proctoring_service.finalize("asm-1")
    stored = await proctoring_service.get_result("asm-1")
    assert first == second == stored
    assert await proctoring_service.preview("asm-1") == stored


@pytest.mark.asyncio
async def test_finalize_without_telemetry_is_clean(proctoring_service):
    result = await proctoring_service.finalize("asm-quiet")
    assert result.integrity_score == 100.0
    assert result.severity == "low"
    assert result.metrics == {}


@pytest.mark.asyncio
async def test_concurrent_finalize_stores_one_result(proctoring_service, session_factory):
    await proctoring_service.submit_metrics("asm-1", TelemetrySnapshot(off_screen_time=60))
    results = await asyncio.gather(*[proctoring_service.finalize("asm-1") for _ in range(4)])
    assert all(r == results[0] for r in results)

    async with session_factory() as db:
        count = await db.scalar(select(func.count()).select_from(ProctoringResultRecord))
    assert count == 1


@pytest.mark.asyncio
async def test_missing_assessment_id_is_rejected(proctoring_service):
    with pytest.raises(ValidationError):
        await proctoring_service.submit_metrics("", TelemetrySnapshot())


@pytest.mark.asyncio
async def test_rules_file_from_settings(tmp_path, session_factory, test_settings):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"rules": {"tab_switch": {"threshold": 1}}}))
    settings = replace(test_settings, proctoring_rules_file=str(path), proctoring_mid_bound=90.0)

    config = load_config(settings)
    assert config.rules["tab_switch"].threshold == 1
    assert config.mid_bound == 90.0

    service = ProctoringService(session_factory, settings=settings)
    await service.submit_metrics("asm-1", TelemetrySnapshot(tab_switches=2))
    assert (await service.finalize("asm-1")).flags == ("EXCESSIVE_TAB_SWITCHING",)


@pytest.mark.asyncio
async def test_locks_are_released_after_each_assessment(proctoring_service):
    for i in range(20):
        await proctoring_service.submit_metrics(f"asm-{i}", TelemetrySnapshot(tab_switches=1))
        await proctoring_service.finalize(f"asm-{i}")
    assert len(proctoring_service.locks) == 0
