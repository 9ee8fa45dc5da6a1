from datetime import datetime
from typing import Any
from uuid import UUID

import psycopg
from psycopg.rows import dict_row

from docintake.database.connection import Database
from docintake.database.models import FIELD_COLUMNS, DocumentFieldRecord, field_from_row

_INSERT_FIELD_SQL = """
    INSERT INTO document_fields
    (id, document_id, field_name, field_value, field_type, confidence,
     bounding_box, page_number, table_index, row_index, column_index,
     extracted_at, extracted_by, is_verified, verified_by, verified_at, notes)
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
            COALESCE(%s, NOW()), %s, %s, %s, %s, %s)
"""


def _field_params(field: DocumentFieldRecord) -> tuple[object, ...]:
    return (
        field.id,
        field.document_id,
        field.field_name,
        field.field_value,
        field.field_type,
        field.confidence,
        field.bounding_box,
        field.page_number,
        field.table_index,
        field.row_index,
        field.column_index,
        field.extracted_at,
        field.extracted_by,
        field.is_verified,
        field.verified_by,
        field.verified_at,
        field.notes,
    )


async def insert_fields(
    conn: psycopg.AsyncConnection[Any], fields: list[DocumentFieldRecord]
) -> None:
    """Bulk insert on an open connection. Caller commits."""
    if not fields:
        return
    async with conn.cursor() as cur:
        await cur.executemany(_INSERT_FIELD_SQL, [_field_params(f) for f in fields])


async def delete_fields(conn: psycopg.AsyncConnection[Any], document_id: UUID) -> int:
    """Delete every field of a document on an open connection. Caller commits."""
    async with conn.cursor() as cur:
        await cur.execute(
            "DELETE FROM document_fields WHERE document_id = %s",
            (document_id,),
        )
        return cur.rowcount


class DocumentFieldRepository:
    """Database operations for the document_fields table."""

    def __init__(self, database: Database) -> None:
        self._database = database

    async def add_many(self, fields: list[DocumentFieldRecord]) -> None:
        async with self._database.connection() as conn:
            await insert_fields(conn, fields)
            await conn.commit()

    async def delete_by_document(self, document_id: UUID) -> int:
        async with self._database.connection() as conn:
            deleted = await delete_fields(conn, document_id)
            await conn.commit()
        return deleted

    async def list_by_document(self, document_id: UUID) -> list[DocumentFieldRecord]:
        """Fields in extraction order: page, table position, then name."""
        async with self._database.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    SELECT {FIELD_COLUMNS}
                    FROM document_fields
                    WHERE document_id = %s
                    ORDER BY page_number NULLS LAST, table_index NULLS FIRST,
                             row_index NULLS FIRST, column_index NULLS FIRST,
                             extracted_at, field_name
                    """,
                    (document_id,),
                )
                rows = await cur.fetchall()
        return [field_from_row(row) for row in rows]

    async def find_by_id(self, field_id: UUID) -> DocumentFieldRecord | None:
        async with self._database.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"SELECT {FIELD_COLUMNS} FROM document_fields WHERE id = %s",
                    (field_id,),
                )
                row = await cur.fetchone()
        return field_from_row(row) if row is not None else None

    async def update_value(
        self, field_id: UUID, value: str | None
    ) -> DocumentFieldRecord | None:
        async with self._database.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    UPDATE document_fields
                    SET field_value = %s
                    WHERE id = %s
                    RETURNING {FIELD_COLUMNS}
                    """,
                    (value, field_id),
                )
                row = await cur.fetchone()
            await conn.commit()
        return field_from_row(row) if row is not None else None

    async def mark_verified(
        self, field_id: UUID, verified_by: str, verified_at: datetime
    ) -> DocumentFieldRecord | None:
        async with self._database.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    UPDATE document_fields
                    SET is_verified = TRUE, verified_by = %s, verified_at = %s
                    WHERE id = %s
                    RETURNING {FIELD_COLUMNS}
                    """,
                    (verified_by, verified_at, field_id),
                )
                row = await cur.fetchone()
            await conn.commit()
        return field_from_row(row) if row is not None else None
