from collections.abc import Collection
from typing import Any
from uuid import UUID

from psycopg.rows import dict_row

from docintake.database.connection import Database
from docintake.database.models import (
    DOCUMENT_COLUMNS,
    DocumentFieldRecord,
    DocumentRecord,
    document_from_row,
)
from docintake.database.repositories.document_field_repository import (
    delete_fields,
    insert_fields,
)
from docintake.processor.models import DocumentSearch, DocumentUpdate
from docintake.processor.state_machine import DocumentStatus


def _status_values(statuses: Collection[DocumentStatus]) -> list[str]:
    return [status.value for status in statuses]


class DocumentRepository:
    """Database operations for the documents table.

    Every read filters out soft-deleted rows unless include_deleted is set.
    Every status change is a conditional UPDATE guarded by the expected
    previous status, so two concurrent callers can never both win.
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    async def create(self, document: DocumentRecord) -> DocumentRecord:
        async with self._database.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    INSERT INTO documents
                    (id, file_name, file_type, file_size, blob_url, container_name,
                     blob_name, user_id, status, project_name, description,
                     document_category, is_public)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {DOCUMENT_COLUMNS}
                    """,
                    (
                        document.id,
                        document.file_name,
                        document.file_type,
                        document.file_size,
                        document.blob_url,
                        document.container_name,
                        document.blob_name,
                        document.user_id,
                        document.status.value,
                        document.project_name,
                        document.description,
                        document.document_category,
                        document.is_public,
                    ),
                )
                row = await cur.fetchone()
            await conn.commit()
        if row is None:
            raise RuntimeError(f"Insert of document {document.id} returned no row")
        return document_from_row(row)

    async def find_by_id(
        self, document_id: UUID, include_deleted: bool = False
    ) -> DocumentRecord | None:
        async with self._database.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    SELECT {DOCUMENT_COLUMNS}
                    FROM documents
                    WHERE id = %s
                      AND (%s OR NOT is_deleted)
                    """,
                    (document_id, include_deleted),
                )
                row = await cur.fetchone()
        return document_from_row(row) if row is not None else None

    async def search(self, owner_id: str, search: DocumentSearch) -> list[DocumentRecord]:
        """Owner's documents, newest first, filtered and paginated."""
        clauses = ["user_id = %s", "NOT is_deleted"]
        params: list[Any] = [owner_id]
        if search.search_term:
            pattern = f"%{search.search_term}%"
            clauses.append(
                "(file_name ILIKE %s OR project_name ILIKE %s OR description ILIKE %s)"
            )
            params.extend([pattern, pattern, pattern])
        if search.status is not None:
            clauses.append("status = %s")
            params.append(search.status.value)
        if search.category:
            clauses.append("document_category = %s")
            params.append(search.category)
        if search.date_from is not None:
            clauses.append("uploaded_at >= %s")
            params.append(search.date_from)
        if search.date_to is not None:
            clauses.append("uploaded_at <= %s")
            params.append(search.date_to)
        params.extend([search.page_size, (search.page - 1) * search.page_size])

        async with self._database.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    SELECT {DOCUMENT_COLUMNS}
                    FROM documents
                    WHERE {" AND ".join(clauses)}
                    ORDER BY uploaded_at DESC, id
                    LIMIT %s OFFSET %s
                    """,
                    params,
                )
                rows = await cur.fetchall()
        return [document_from_row(row) for row in rows]

    async def count_by_owner(self, owner_id: str) -> int:
        async with self._database.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    "SELECT COUNT(*) FROM documents WHERE user_id = %s AND NOT is_deleted",
                    (owner_id,),
                )
                row = await cur.fetchone()
        return int(row[0]) if row is not None else 0

    async def categories_by_owner(self, owner_id: str) -> list[str]:
        async with self._database.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    SELECT DISTINCT document_category
                    FROM documents
                    WHERE user_id = %s
                      AND NOT is_deleted
                      AND document_category IS NOT NULL
                      AND document_category <> ''
                    ORDER BY document_category
                    """,
                    (owner_id,),
                )
                rows = await cur.fetchall()
        return [row[0] for row in rows]

    async def list_ids_by_status(
        self,
        status: DocumentStatus,
        limit: int,
        max_retry_count: int | None = None,
    ) -> list[UUID]:
        """Oldest-first ids in *status*; optionally only those under a retry count."""
        async with self._database.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    SELECT id
                    FROM documents
                    WHERE status = %s
                      AND NOT is_deleted
                      AND (%s::int IS NULL OR retry_count < %s::int)
                    ORDER BY uploaded_at
                    LIMIT %s
                    """,
                    (status.value, max_retry_count, max_retry_count, limit),
                )
                rows = await cur.fetchall()
        return [row[0] for row in rows]

    async def transition(
        self,
        document_id: UUID,
        expected: Collection[DocumentStatus],
        new_status: DocumentStatus,
    ) -> DocumentRecord | None:
        """Compare-and-swap the status. Returns None if the row was not in *expected*."""
        async with self._database.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    UPDATE documents
                    SET status = %s, last_modified = NOW()
                    WHERE id = %s
                      AND NOT is_deleted
                      AND status = ANY(%s)
                    RETURNING {DOCUMENT_COLUMNS}
                    """,
                    (new_status.value, document_id, _status_values(expected)),
                )
                row = await cur.fetchone()
            await conn.commit()
        return document_from_row(row) if row is not None else None

    async def complete_processing(
        self,
        document_id: UUID,
        fields: list[DocumentFieldRecord],
        processing_result: str,
        processing_type: str,
    ) -> DocumentRecord | None:
        """Processing -> Processed and insert fields, in one transaction.

        Returns None (and writes nothing) if the document left Processing
        meanwhile, e.g. it was cancelled.
        """
        async with self._database.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    UPDATE documents
                    SET status = %s,
                        processed_at = NOW(),
                        last_modified = NOW(),
                        processing_result = %s,
                        processing_type = %s,
                        error_message = NULL
                    WHERE id = %s
                      AND status = %s
                    RETURNING {DOCUMENT_COLUMNS}
                    """,
                    (
                        DocumentStatus.PROCESSED.value,
                        processing_result,
                        processing_type,
                        document_id,
                        DocumentStatus.PROCESSING.value,
                    ),
                )
                row = await cur.fetchone()
            if row is None:
                await conn.rollback()
                return None
            await insert_fields(conn, fields)
            await conn.commit()
        return document_from_row(row)

    async def mark_failed(
        self,
        document_id: UUID,
        error_message: str,
        processing_type: str | None,
    ) -> DocumentRecord | None:
        """Processing -> Failed. ProcessedAt stays unset."""
        async with self._database.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    UPDATE documents
                    SET status = %s,
                        error_message = %s,
                        processing_type = %s,
                        processed_at = NULL,
                        last_modified = NOW()
                    WHERE id = %s
                      AND status = %s
                    RETURNING {DOCUMENT_COLUMNS}
                    """,
                    (
                        DocumentStatus.FAILED.value,
                        error_message,
                        processing_type,
                        document_id,
                        DocumentStatus.PROCESSING.value,
                    ),
                )
                row = await cur.fetchone()
            await conn.commit()
        return document_from_row(row) if row is not None else None

    async def reset_for_retry(
        self,
        document_id: UUID,
        expected: Collection[DocumentStatus],
        max_retry_count: int | None = None,
    ) -> DocumentRecord | None:
        """Claim (-> Retrying), drop prior fields, reset to Uploaded, retry_count + 1.

        All three steps share one transaction. Returns None if the claim failed.
        """
        async with self._database.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    UPDATE documents
                    SET status = %s, last_modified = NOW()
                    WHERE id = %s
                      AND NOT is_deleted
                      AND status = ANY(%s)
                      AND (%s::int IS NULL OR retry_count < %s::int)
                    RETURNING id
                    """,
                    (
                        DocumentStatus.RETRYING.value,
                        document_id,
                        _status_values(expected),
                        max_retry_count,
                        max_retry_count,
                    ),
                )
                claimed = await cur.fetchone()
                if claimed is None:
                    await conn.rollback()
                    return None

                await delete_fields(conn, document_id)

                await cur.execute(
                    f"""
                    UPDATE documents
                    SET status = %s,
                        processed_at = NULL,
                        processing_result = NULL,
                        error_message = NULL,
                        retry_count = retry_count + 1,
                        last_modified = NOW()
                    WHERE id = %s
                    RETURNING {DOCUMENT_COLUMNS}
                    """,
                    (DocumentStatus.UPLOADED.value, document_id),
                )
                row = await cur.fetchone()
            await conn.commit()
        return document_from_row(row) if row is not None else None

    async def soft_delete(self, document_id: UUID) -> bool:
        async with self._database.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    UPDATE documents
                    SET is_deleted = TRUE, last_modified = NOW()
                    WHERE id = %s
                      AND NOT is_deleted
                    """,
                    (document_id,),
                )
                deleted = cur.rowcount > 0
            await conn.commit()
        return deleted

    async def update_metadata(
        self, document_id: UUID, update: DocumentUpdate
    ) -> DocumentRecord | None:
        async with self._database.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    UPDATE documents
                    SET project_name = COALESCE(%s, project_name),
                        description = COALESCE(%s, description),
                        document_category = COALESCE(%s, document_category),
                        is_public = COALESCE(%s, is_public),
                        last_modified = NOW()
                    WHERE id = %s
                      AND NOT is_deleted
                    RETURNING {DOCUMENT_COLUMNS}
                    """,
                    (
                        update.project_name,
                        update.description,
                        update.document_category,
                        update.is_public,
                        document_id,
                    ),
                )
                row = await cur.fetchone()
            await conn.commit()
        return document_from_row(row) if row is not None else None

    async def cancel(
        self, document_id: UUID, expected: Collection[DocumentStatus]
    ) -> DocumentRecord | None:
        return await self.transition(document_id, expected, DocumentStatus.CANCELLED)
