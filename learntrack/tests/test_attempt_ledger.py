"""
learntrack/tests/test_attempt_ledger.py
Attempt Ledger: validation, sequencing and ordering
"""
from datetime import datetime

import pytest

from learntrack.exceptions import ConflictError, ValidationError
from learntrack.services.attempt_ledger import AttemptLedger, SqlLedgerStore, validate_attempt
from learntrack.services.progress_state import AssessmentAttempt


def make_attempt(number: int, score: float = 80.0, **overrides) -> AssessmentAttempt:
    fields = dict(
        attempt_number=number,
        test_score=score,
        cli_value=40.0,
        cli_classification="Moderate Load",
        confidence=0.8,
        time_spent=300.0,
        completed_at=datetime(2024, 1, 1, 12, number),
        assessment_id=f"asm-{number}",
    )
    fields.update(overrides)
    return AssessmentAttempt(**fields)


@pytest.fixture
def ledger(db_session):
    return AttemptLedger(SqlLedgerStore(db_session))


class TestRecord:

    @pytest.mark.asyncio
    async def test_sequential_attempts_are_listed_in_order(self, ledger):
        for n, score in [(1, 55.0), (2, 70.0), (3, 90.0)]:
            await ledger.record("u1", "v1", make_attempt(n, score))

        attempts = await ledger.list_attempts("u1", "v1")
        assert [a.attempt_number for a in attempts] == [1, 2, 3]
        assert [a.test_score for a in attempts] == [55.0, 70.0, 90.0]

    @pytest.mark.asyncio
    async def test_list_returns_a_fresh_list(self, ledger):
        await ledger.record("u1", "v1", make_attempt(1))
        first = await ledger.list_attempts("u1", "v1")
        first.clear()
        assert len(await ledger.list_attempts("u1", "v1")) == 1

    @pytest.mark.asyncio
    async def test_gap_is_rejected(self, ledger):
        with pytest.raises(ValidationError) as exc:
            await ledger.record("u1", "v1", make_attempt(2))
        assert exc.value.constraint == "sequential"
        assert exc.value.details["expected"] == 1
        assert exc.value.details["received"] == 2
        assert await ledger.list_attempts("u1", "v1") == []

    @pytest.mark.asyncio
    async def test_duplicate_number_is_rejected(self, ledger):
        await ledger.record("u1", "v1", make_attempt(1))
        with pytest.raises(ValidationError):
            await ledger.record("u1", "v1", make_attempt(1, score=99.0))
        attempts = await ledger.list_attempts("u1", "v1")
        assert [a.test_score for a in attempts] == [80.0]

    @pytest.mark.asyncio
    async def test_numbering_is_per_user_and_video(self, ledger):
        await ledger.record("u1", "v1", make_attempt(1))
        await ledger.record("u1", "v2", make_attempt(1))
        await ledger.record("u2", "v1", make_attempt(1))

        assert await ledger.next_attempt_number("u1", "v1") == 2
        assert await ledger.next_attempt_number("u1", "v3") == 1

    @pytest.mark.asyncio
    async def test_list_for_videos_groups_attempts(self, ledger):
        await ledger.record("u1", "v1", make_attempt(1))
        await ledger.record("u1", "v1", make_attempt(2))
        await ledger.record("u1", "v2", make_attempt(1))

        grouped = await ledger.list_for_videos("u1", ["v1", "v2", "v3"])
        assert [a.attempt_number for a in grouped["v1"]] == [1, 2]
        assert len(grouped["v2"]) == 1
        assert grouped["v3"] == []

    @pytest.mark.asyncio
    async def test_store_rejects_duplicate_rows(self, db_session):
        store = SqlLedgerStore(db_session)
        await store.append("u1", "v1", make_attempt(1))
        with pytest.raises(ConflictError):
            await store.append("u1", "v1", make_attempt(1))


class TestValidation:

    @pytest.mark.parametrize("overrides, field", [
        ({"test_score": 101.0}, "testScore"),
        ({"test_score": -0.5}, "testScore"),
        ({"confidence": 1.2}, "confidence"),
        ({"confidence": -0.1}, "confidence"),
        ({"time_spent": -1.0}, "timeSpent"),
        ({"cli_classification": "Extreme Load"}, "cliClassification"),
        ({"attempt_number": 0}, "attemptNumber"),
        ({"assessment_id": ""}, "assessmentId"),
        ({"test_score": float("nan")}, "testScore"),
    ])
    def test_out_of_range_fields(self, overrides, field):
        number = overrides.pop("attempt_number", 1)
        with pytest.raises(ValidationError) as exc:
            validate_attempt(make_attempt(number, **overrides))
        assert exc.value.field == field
        assert exc.value.details["field"] == field

    def test_boundaries_are_accepted(self):
        validate_attempt(make_attempt(1, score=0.0, confidence=0.0, time_spent=0.0))
        validate_attempt(make_attempt(1, score=100.0, confidence=1.0, cli_classification="High Load"))
