from datetime import datetime
from typing import Any

from psycopg.rows import dict_row

from docintake.database.connection import Database
from docintake.database.models import AUDIT_COLUMNS, AuditLogRecord, audit_from_row


class AuditLogRepository:
    """Append-only access to the audit_logs table. Rows are never updated or deleted."""

    def __init__(self, database: Database) -> None:
        self._database = database

    async def insert(self, record: AuditLogRecord) -> AuditLogRecord:
        async with self._database.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    INSERT INTO audit_logs
                    (id, timestamp, action, entity_type, entity_id, user_id,
                     status, severity, description, details, ip_address,
                     user_agent, is_anomaly, anomaly_reason)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {AUDIT_COLUMNS}
                    """,
                    (
                        record.id,
                        record.timestamp,
                        record.action,
                        record.entity_type,
                        record.entity_id,
                        record.user_id,
                        record.status.value,
                        record.severity.value,
                        record.description,
                        record.details,
                        record.ip_address,
                        record.user_agent,
                        record.is_anomaly,
                        record.anomaly_reason,
                    ),
                )
                row = await cur.fetchone()
            await conn.commit()
        if row is None:
            raise RuntimeError(f"Insert of audit log {record.id} returned no row")
        return audit_from_row(row)

    async def list_for_user_between(
        self, user_id: str, since: datetime, until: datetime
    ) -> list[AuditLogRecord]:
        """Events of one user with since < timestamp <= until, oldest first."""
        async with self._database.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    SELECT {AUDIT_COLUMNS}
                    FROM audit_logs
                    WHERE user_id = %s
                      AND timestamp > %s
                      AND timestamp <= %s
                    ORDER BY timestamp, seq
                    """,
                    (user_id, since, until),
                )
                rows = await cur.fetchall()
        return [audit_from_row(row) for row in rows]

    async def query(
        self,
        user_id: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> list[AuditLogRecord]:
        where, params = self._filters(user_id, date_from, date_to)
        params.extend([page_size, (page - 1) * page_size])
        async with self._database.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    SELECT {AUDIT_COLUMNS}
                    FROM audit_logs
                    {where}
                    ORDER BY timestamp DESC, seq DESC
                    LIMIT %s OFFSET %s
                    """,
                    params,
                )
                rows = await cur.fetchall()
        return [audit_from_row(row) for row in rows]

    async def list_by_entity(self, entity_type: str, entity_id: str) -> list[AuditLogRecord]:
        async with self._database.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    SELECT {AUDIT_COLUMNS}
                    FROM audit_logs
                    WHERE entity_type = %s
                      AND entity_id = %s
                    ORDER BY timestamp DESC, seq DESC
                    """,
                    (entity_type, entity_id),
                )
                rows = await cur.fetchall()
        return [audit_from_row(row) for row in rows]

    async def list_anomalies(
        self, date_from: datetime | None = None, date_to: datetime | None = None
    ) -> list[AuditLogRecord]:
        where, params = self._filters(None, date_from, date_to, anomalies_only=True)
        async with self._database.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    SELECT {AUDIT_COLUMNS}
                    FROM audit_logs
                    {where}
                    ORDER BY timestamp DESC, seq DESC
                    """,
                    params,
                )
                rows = await cur.fetchall()
        return [audit_from_row(row) for row in rows]

    async def count(
        self,
        user_id: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> int:
        where, params = self._filters(user_id, date_from, date_to)
        async with self._database.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(f"SELECT COUNT(*) FROM audit_logs {where}", params)
                row = await cur.fetchone()
        return int(row[0]) if row is not None else 0

    @staticmethod
    def _filters(
        user_id: str | None,
        date_from: datetime | None,
        date_to: datetime | None,
        anomalies_only: bool = False,
    ) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if user_id is not None:
            clauses.append("user_id = %s")
            params.append(user_id)
        if date_from is not None:
            clauses.append("timestamp >= %s")
            params.append(date_from)
        if date_to is not None:
            clauses.append("timestamp <= %s")
            params.append(date_to)
        if anomalies_only:
            clauses.append("is_anomaly")
        if not clauses:
            return "", params
        return "WHERE " + " AND ".join(clauses), params
