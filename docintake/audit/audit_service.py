import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from docintake.audit.anomaly import NOT_ANOMALOUS, AnomalyDetector, AnomalyVerdict
from docintake.audit.models import AuditSeverity, AuditStatus
from docintake.database.models import AuditLogRecord
from docintake.database.repositories.audit_log_repository import AuditLogRepository
from docintake.logging.logger import Log
from docintake.processor.exceptions import ValidationError


class AuditService:
    """Appends audit events and answers audit queries.

    Writing is best-effort: log_event never raises. Anomaly scoring happens
    before the insert so the flag is part of the same row.
    """

    def __init__(
        self,
        repository: AuditLogRepository,
        detector: AnomalyDetector,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._detector = detector
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def log_event(
        self,
        action: str,
        entity_type: str,
        entity_id: str | None,
        user_id: str | None,
        description: str | None = None,
        details: str | None = None,
        *,
        status: AuditStatus = AuditStatus.SUCCESS,
        severity: AuditSeverity = AuditSeverity.INFO,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditLogRecord | None:
        try:
            timestamp = self._clock()
            verdict = await self._evaluate(user_id, action, status, timestamp)
            if verdict.is_anomalous:
                if severity.rank < AuditSeverity.WARNING.rank:
                    severity = AuditSeverity.WARNING
                Log.warning(
                    f"Anomalous audit event: {verdict.reason}",
                    user_id=user_id,
                    action=action,
                )
            record = AuditLogRecord(
                id=uuid.uuid4(),
                timestamp=timestamp,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                user_id=user_id,
                status=status,
                severity=severity,
                description=description,
                details=details,
                ip_address=ip_address,
                user_agent=user_agent,
                is_anomaly=verdict.is_anomalous,
                anomaly_reason=verdict.reason,
            )
            return await self._repository.insert(record)
        except Exception:
            Log.exception(
                "Audit write failed",
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                user_id=user_id,
            )
            return None

    async def _evaluate(
        self,
        user_id: str | None,
        action: str,
        status: AuditStatus,
        timestamp: datetime,
    ) -> AnomalyVerdict:
        try:
            return await self._detector.evaluate(user_id, action, status, timestamp)
        except Exception:
            Log.exception("Anomaly evaluation failed; recording event as normal", action=action)
            return NOT_ANOMALOUS

    async def get_audit_logs(
        self,
        user_id: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> list[AuditLogRecord]:
        _validate_page(page, page_size)
        return await self._repository.query(user_id, date_from, date_to, page, page_size)

    async def get_audit_logs_by_entity(
        self, entity_type: str, entity_id: str
    ) -> list[AuditLogRecord]:
        return await self._repository.list_by_entity(entity_type, entity_id)

    async def get_anomalies(
        self, date_from: datetime | None = None, date_to: datetime | None = None
    ) -> list[AuditLogRecord]:
        return await self._repository.list_anomalies(date_from, date_to)

    async def get_audit_log_count(
        self,
        user_id: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> int:
        return await self._repository.count(user_id, date_from, date_to)


def _validate_page(page: int, page_size: int) -> None:
    if page < 1:
        raise ValidationError(f"page must be >= 1, got {page}")
    if not 1 <= page_size <= 500:
        raise ValidationError(f"page_size must be between 1 and 500, got {page_size}")
