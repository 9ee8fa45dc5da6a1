import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from docintake.audit.anomaly import NOT_ANOMALOUS, AnomalyDetector
from docintake.audit.models import AuditStatus
from docintake.database.models import AuditLogRecord

T0 = datetime(2026, 1, 15, 9, 0, 0, tzinfo=timezone.utc)
DOWNLOADED = "DocumentDownloaded"


def _make_event(
    at: datetime,
    action: str = DOWNLOADED,
    status: AuditStatus = AuditStatus.SUCCESS,
) -> AuditLogRecord:
    return AuditLogRecord(
        id=uuid.uuid4(),
        timestamp=at,
        action=action,
        entity_type="Document",
        entity_id="d1",
        user_id="u1",
        status=status,
    )


def _events(count: int, spacing: timedelta, **kwargs: object) -> list[AuditLogRecord]:
    return [_make_event(T0 - spacing * (i + 1), **kwargs) for i in range(count)]  # type: ignore[arg-type]


def _mock_repository(history: list[AuditLogRecord]) -> MagicMock:
    repository = MagicMock()
    repository.list_for_user_between = AsyncMock(return_value=history)
    return repository


class TestBurstRule:
    def test_sixth_event_within_one_second_is_flagged(self) -> None:
        history = _events(5, timedelta(milliseconds=100))

        verdict = AnomalyDetector.score(history, DOWNLOADED, AuditStatus.SUCCESS, T0)

        assert verdict.is_anomalous is True
        assert verdict.reason is not None
        assert verdict.reason.startswith("burst: 6 events")

    def test_fifth_event_is_not_flagged(self) -> None:
        history = _events(4, timedelta(milliseconds=100))

        verdict = AnomalyDetector.score(history, DOWNLOADED, AuditStatus.SUCCESS, T0)

        assert verdict == NOT_ANOMALOUS

    def test_events_outside_the_second_do_not_count(self) -> None:
        history = _events(10, timedelta(seconds=2))

        verdict = AnomalyDetector.score(history, DOWNLOADED, AuditStatus.SUCCESS, T0)

        assert verdict.is_anomalous is False


class TestRepeatedActionRule:
    def test_fifty_first_identical_action_is_flagged(self) -> None:
        history = _events(50, timedelta(seconds=30))

        verdict = AnomalyDetector.score(history, DOWNLOADED, AuditStatus.SUCCESS, T0)

        assert verdict.is_anomalous is True
        assert verdict.reasons == (
            f"repeated action: {DOWNLOADED} x51 within 1h (limit 50)",
        )

    def test_fiftieth_identical_action_is_not_flagged(self) -> None:
        history = _events(49, timedelta(seconds=30))

        verdict = AnomalyDetector.score(history, DOWNLOADED, AuditStatus.SUCCESS, T0)

        assert verdict.is_anomalous is False

    def test_other_actions_do_not_count(self) -> None:
        history = _events(60, timedelta(seconds=30), action="DocumentCreated")

        verdict = AnomalyDetector.score(history, DOWNLOADED, AuditStatus.SUCCESS, T0)

        assert verdict.is_anomalous is False

    def test_events_older_than_an_hour_do_not_count(self) -> None:
        history = [_make_event(T0 - timedelta(hours=2, seconds=i)) for i in range(60)]

        verdict = AnomalyDetector.score(history, DOWNLOADED, AuditStatus.SUCCESS, T0)

        assert verdict.is_anomalous is False


class TestFailureRule:
    def test_eleventh_failure_is_flagged(self) -> None:
        history = _events(10, timedelta(minutes=1), action="DocumentProcessed", status=AuditStatus.FAILED)

        verdict = AnomalyDetector.score(history, DOWNLOADED, AuditStatus.FAILED, T0)

        assert verdict.reasons == ("failure storm: 11 failed events within 1h (limit 10)",)

    def test_successful_candidate_after_ten_failures_is_not_flagged(self) -> None:
        history = _events(10, timedelta(minutes=1), action="DocumentProcessed", status=AuditStatus.FAILED)

        verdict = AnomalyDetector.score(history, DOWNLOADED, AuditStatus.SUCCESS, T0)

        assert verdict.is_anomalous is False


class TestCombinedReasons:
    def test_reasons_are_joined(self) -> None:
        history = _events(11, timedelta(milliseconds=50), status=AuditStatus.FAILED)

        verdict = AnomalyDetector.score(history, "DocumentProcessed", AuditStatus.FAILED, T0)

        assert len(verdict.reasons) == 2
        assert verdict.reason == "; ".join(verdict.reasons)
        assert "burst" in verdict.reasons[0]
        assert "failure storm" in verdict.reasons[1]


class TestEvaluate:
    @pytest.mark.asyncio
    async def test_event_without_user_is_never_anomalous(self) -> None:
        repository = _mock_repository([])
        detector = AnomalyDetector(repository)

        verdict = await detector.evaluate(None, DOWNLOADED)

        assert verdict == NOT_ANOMALOUS
        repository.list_for_user_between.assert_not_called()

    @pytest.mark.asyncio
    async def test_reads_the_trailing_hour_for_the_user(self) -> None:
        repository = _mock_repository([])
        detector = AnomalyDetector(repository)

        await detector.evaluate("u1", DOWNLOADED, timestamp=T0)

        repository.list_for_user_between.assert_awaited_once_with(
            "u1", T0 - timedelta(hours=1), T0
        )

    @pytest.mark.asyncio
    async def test_uses_clock_when_no_timestamp(self) -> None:
        repository = _mock_repository([])
        detector = AnomalyDetector(repository, clock=lambda: T0)

        await detector.evaluate("u1", DOWNLOADED)

        assert repository.list_for_user_between.await_args.args[2] == T0

    @pytest.mark.asyncio
    async def test_is_anomalous_returns_boolean(self) -> None:
        repository = _mock_repository(_events(5, timedelta(milliseconds=100)))
        detector = AnomalyDetector(repository)

        assert await detector.is_anomalous("u1", DOWNLOADED, timestamp=T0) is True
