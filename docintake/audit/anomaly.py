"""Write-time anomaly tripwire over a user's recent audit events.

Three independent rules, any one of which flags the candidate event:

- burst: more than 5 events within the 1-second window ending at the event
- repeated action: one action tag more than 50 times within the trailing hour
- failure storm: more than 10 Failed events within the trailing hour

The candidate event itself counts toward every rule.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import ClassVar

from docintake.audit.models import AuditStatus
from docintake.database.models import AuditLogRecord
from docintake.database.repositories.audit_log_repository import AuditLogRepository


@dataclass(frozen=True)
class AnomalyVerdict:
    is_anomalous: bool
    reasons: tuple[str, ...] = field(default_factory=tuple)

    @property
    def reason(self) -> str | None:
        return "; ".join(self.reasons) if self.reasons else None


NOT_ANOMALOUS = AnomalyVerdict(is_anomalous=False)


class AnomalyDetector:
    """Scores a candidate event against the existing log of the same user."""

    BURST_WINDOW: ClassVar[timedelta] = timedelta(seconds=1)
    BURST_LIMIT: ClassVar[int] = 5
    HISTORY_WINDOW: ClassVar[timedelta] = timedelta(hours=1)
    REPEATED_ACTION_LIMIT: ClassVar[int] = 50
    FAILURE_LIMIT: ClassVar[int] = 10

    def __init__(
        self,
        repository: AuditLogRepository,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def evaluate(
        self,
        user_id: str | None,
        action: str,
        status: AuditStatus = AuditStatus.SUCCESS,
        timestamp: datetime | None = None,
    ) -> AnomalyVerdict:
        if not user_id:
            return NOT_ANOMALOUS
        at = timestamp or self._clock()
        history = await self._repository.list_for_user_between(
            user_id, at - self.HISTORY_WINDOW, at
        )
        return self.score(history, action, status, at)

    async def is_anomalous(
        self,
        user_id: str | None,
        action: str,
        timestamp: datetime | None = None,
        status: AuditStatus = AuditStatus.SUCCESS,
    ) -> bool:
        verdict = await self.evaluate(user_id, action, status, timestamp)
        return verdict.is_anomalous

    @classmethod
    def score(
        cls,
        history: Sequence[AuditLogRecord],
        action: str,
        status: AuditStatus,
        timestamp: datetime,
    ) -> AnomalyVerdict:
        """Apply every rule to *history* plus the candidate event. No I/O."""
        history_start = timestamp - cls.HISTORY_WINDOW
        burst_start = timestamp - cls.BURST_WINDOW
        recent = [e for e in history if history_start < e.timestamp <= timestamp]

        burst = 1 + sum(1 for e in recent if e.timestamp > burst_start)
        same_action = 1 + sum(1 for e in recent if e.action == action)
        failures = sum(1 for e in recent if e.status == AuditStatus.FAILED)
        if status == AuditStatus.FAILED:
            failures += 1

        reasons: list[str] = []
        if burst > cls.BURST_LIMIT:
            reasons.append(
                f"burst: {burst} events within {cls.BURST_WINDOW.total_seconds():g}s "
                f"(limit {cls.BURST_LIMIT})"
            )
        if same_action > cls.REPEATED_ACTION_LIMIT:
            reasons.append(
                f"repeated action: {action} x{same_action} within 1h "
                f"(limit {cls.REPEATED_ACTION_LIMIT})"
            )
        if failures > cls.FAILURE_LIMIT:
            reasons.append(
                f"failure storm: {failures} failed events within 1h "
                f"(limit {cls.FAILURE_LIMIT})"
            )
        return AnomalyVerdict(is_anomalous=bool(reasons), reasons=tuple(reasons))
