"""In-memory collaborators for orchestrator, audit and worker tests.

They mirror the guarded semantics of the SQL repositories: every status
change only applies when the row is in one of the expected statuses.
"""

import asyncio
import uuid
from collections.abc import Collection
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import ClassVar
from uuid import UUID

import pytest

from docintake.audit.anomaly import AnomalyDetector
from docintake.audit.audit_service import AuditService
from docintake.config.settings import Settings
from docintake.database.models import AuditLogRecord, DocumentFieldRecord, DocumentRecord
from docintake.extraction.base import BaseExtractionProvider
from docintake.extraction.field_mapper import FieldMapper
from docintake.extraction.models import (
    ExtractedField,
    ExtractionMode,
    ExtractionResult,
    FieldKind,
)
from docintake.processor.access import AccessPolicy
from docintake.processor.models import DocumentSearch, DocumentUpdate
from docintake.processor.orchestrator import DocumentOrchestrator
from docintake.processor.state_machine import DocumentStatus
from docintake.storage.base import BaseBlobStore
from docintake.storage.exceptions import BlobNotFoundError, StorageError

T0 = datetime(2026, 1, 15, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock advancing by *step* on every call."""

    def __init__(self, start: datetime = T0, step: timedelta = timedelta(seconds=2)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


class InMemoryBlobStore(BaseBlobStore):
    def __init__(self) -> None:
        self.blobs: dict[tuple[str, str], bytes] = {}
        self.fail_uploads = False
        self.fail_downloads = False

    async def upload(
        self,
        content: bytes,
        logical_name: str,
        container: str,
        content_type: str | None = None,
    ) -> str:
        if self.fail_uploads:
            raise StorageError("blob store unavailable")
        blob_name = f"{uuid.uuid4()}_{logical_name}"
        self.blobs[(container, blob_name)] = content
        return blob_name

    async def download(self, blob_name: str, container: str) -> bytes:
        if self.fail_downloads:
            raise StorageError("blob store unavailable")
        try:
            return self.blobs[(container, blob_name)]
        except KeyError as exc:
            raise BlobNotFoundError(f"{container}/{blob_name}") from exc

    async def delete(self, blob_name: str, container: str) -> bool:
        return self.blobs.pop((container, blob_name), None) is not None

    async def exists(self, blob_name: str, container: str) -> bool:
        return (container, blob_name) in self.blobs

    async def get_url(
        self, blob_name: str, container: str, expiry: datetime | None = None
    ) -> str:
        return f"memory://{container}/{blob_name}"


class InMemoryFieldRepository:
    def __init__(self) -> None:
        self.rows: dict[UUID, DocumentFieldRecord] = {}

    async def add_many(self, fields: list[DocumentFieldRecord]) -> None:
        for field in fields:
            self.rows[field.id] = replace(field, extracted_at=field.extracted_at or T0)

    async def delete_by_document(self, document_id: UUID) -> int:
        doomed = [f.id for f in self.rows.values() if f.document_id == document_id]
        for field_id in doomed:
            del self.rows[field_id]
        return len(doomed)

    async def list_by_document(self, document_id: UUID) -> list[DocumentFieldRecord]:
        return [replace(f) for f in self.rows.values() if f.document_id == document_id]

    async def find_by_id(self, field_id: UUID) -> DocumentFieldRecord | None:
        field = self.rows.get(field_id)
        return replace(field) if field else None

    async def update_value(self, field_id: UUID, value: str | None) -> DocumentFieldRecord | None:
        if field_id not in self.rows:
            return None
        self.rows[field_id] = replace(self.rows[field_id], field_value=value)
        return replace(self.rows[field_id])

    async def mark_verified(
        self, field_id: UUID, verified_by: str, verified_at: datetime
    ) -> DocumentFieldRecord | None:
        if field_id not in self.rows:
            return None
        self.rows[field_id] = replace(
            self.rows[field_id], is_verified=True, verified_by=verified_by, verified_at=verified_at
        )
        return replace(self.rows[field_id])


class InMemoryDocumentRepository:
    def __init__(self, fields: InMemoryFieldRepository) -> None:
        self.rows: dict[UUID, DocumentRecord] = {}
        self.fields = fields
        self.fail_create = False
        self._inserted = 0

    async def create(self, document: DocumentRecord) -> DocumentRecord:
        if self.fail_create:
            raise RuntimeError("database unavailable")
        self._inserted += 1
        stamp = T0 + timedelta(minutes=self._inserted)
        self.rows[document.id] = replace(document, uploaded_at=stamp, last_modified=stamp)
        return replace(self.rows[document.id])

    async def find_by_id(
        self, document_id: UUID, include_deleted: bool = False
    ) -> DocumentRecord | None:
        document = self.rows.get(document_id)
        if document is None or (document.is_deleted and not include_deleted):
            return None
        return replace(document)

    async def search(self, owner_id: str, search: DocumentSearch) -> list[DocumentRecord]:
        found = [
            d
            for d in self.rows.values()
            if d.user_id == owner_id
            and not d.is_deleted
            and (search.status is None or d.status == search.status)
            and (search.category is None or d.document_category == search.category)
            and (
                not search.search_term
                or search.search_term.lower() in d.file_name.lower()
            )
        ]
        found.sort(key=lambda d: d.uploaded_at or T0, reverse=True)
        start = (search.page - 1) * search.page_size
        return [replace(d) for d in found[start : start + search.page_size]]

    async def count_by_owner(self, owner_id: str) -> int:
        return sum(1 for d in self.rows.values() if d.user_id == owner_id and not d.is_deleted)

    async def categories_by_owner(self, owner_id: str) -> list[str]:
        return sorted(
            {
                d.document_category
                for d in self.rows.values()
                if d.user_id == owner_id and not d.is_deleted and d.document_category
            }
        )

    async def list_ids_by_status(
        self, status: DocumentStatus, limit: int, max_retry_count: int | None = None
    ) -> list[UUID]:
        found = [
            d
            for d in self.rows.values()
            if d.status == status
            and not d.is_deleted
            and (max_retry_count is None or d.retry_count < max_retry_count)
        ]
        found.sort(key=lambda d: d.uploaded_at or T0)
        return [d.id for d in found[:limit]]

    def _claim(
        self, document_id: UUID, expected: Collection[DocumentStatus]
    ) -> DocumentRecord | None:
        document = self.rows.get(document_id)
        if document is None or document.is_deleted or document.status not in expected:
            return None
        return document

    async def transition(
        self,
        document_id: UUID,
        expected: Collection[DocumentStatus],
        new_status: DocumentStatus,
    ) -> DocumentRecord | None:
        document = self._claim(document_id, expected)
        if document is None:
            return None
        self.rows[document_id] = replace(document, status=new_status)
        return replace(self.rows[document_id])

    async def complete_processing(
        self,
        document_id: UUID,
        fields: list[DocumentFieldRecord],
        processing_result: str,
        processing_type: str,
    ) -> DocumentRecord | None:
        document = self.rows.get(document_id)
        if document is None or document.status != DocumentStatus.PROCESSING:
            return None
        await self.fields.add_many(fields)
        self.rows[document_id] = replace(
            document,
            status=DocumentStatus.PROCESSED,
            processed_at=T0 + timedelta(hours=1),
            processing_result=processing_result,
            processing_type=processing_type,
            error_message=None,
        )
        return replace(self.rows[document_id])

    async def mark_failed(
        self, document_id: UUID, error_message: str, processing_type: str | None
    ) -> DocumentRecord | None:
        document = self.rows.get(document_id)
        if document is None or document.status != DocumentStatus.PROCESSING:
            return None
        self.rows[document_id] = replace(
            document,
            status=DocumentStatus.FAILED,
            error_message=error_message,
            processing_type=processing_type,
            processed_at=None,
        )
        return replace(self.rows[document_id])

    async def reset_for_retry(
        self,
        document_id: UUID,
        expected: Collection[DocumentStatus],
        max_retry_count: int | None = None,
    ) -> DocumentRecord | None:
        document = self._claim(document_id, expected)
        if document is None:
            return None
        if max_retry_count is not None and document.retry_count >= max_retry_count:
            return None
        await self.fields.delete_by_document(document_id)
        self.rows[document_id] = replace(
            document,
            status=DocumentStatus.UPLOADED,
            processed_at=None,
            processing_result=None,
            error_message=None,
            retry_count=document.retry_count + 1,
        )
        return replace(self.rows[document_id])

    async def soft_delete(self, document_id: UUID) -> bool:
        document = self.rows.get(document_id)
        if document is None or document.is_deleted:
            return False
        self.rows[document_id] = replace(document, is_deleted=True)
        return True

    async def update_metadata(
        self, document_id: UUID, update: DocumentUpdate
    ) -> DocumentRecord | None:
        document = self.rows.get(document_id)
        if document is None or document.is_deleted:
            return None
        changes = {k: v for k, v in vars(update).items() if v is not None}
        self.rows[document_id] = replace(document, **changes)
        return replace(self.rows[document_id])

    async def cancel(
        self, document_id: UUID, expected: Collection[DocumentStatus]
    ) -> DocumentRecord | None:
        return await self.transition(document_id, expected, DocumentStatus.CANCELLED)


class InMemoryAuditLogRepository:
    def __init__(self) -> None:
        self.rows: list[AuditLogRecord] = []
        self.fail_inserts = False

    async def insert(self, record: AuditLogRecord) -> AuditLogRecord:
        if self.fail_inserts:
            raise RuntimeError("audit store unavailable")
        stored = replace(record, seq=len(self.rows) + 1)
        self.rows.append(stored)
        return stored

    async def list_for_user_between(
        self, user_id: str, since: datetime, until: datetime
    ) -> list[AuditLogRecord]:
        return [r for r in self.rows if r.user_id == user_id and since < r.timestamp <= until]

    async def query(
        self,
        user_id: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> list[AuditLogRecord]:
        found = self._filter(user_id, date_from, date_to)
        start = (page - 1) * page_size
        return found[start : start + page_size]

    async def list_by_entity(self, entity_type: str, entity_id: str) -> list[AuditLogRecord]:
        found = [r for r in self.rows if r.entity_type == entity_type and r.entity_id == entity_id]
        return sorted(found, key=lambda r: (r.timestamp, r.seq or 0), reverse=True)

    async def list_anomalies(
        self, date_from: datetime | None = None, date_to: datetime | None = None
    ) -> list[AuditLogRecord]:
        return [r for r in self._filter(None, date_from, date_to) if r.is_anomaly]

    async def count(
        self,
        user_id: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> int:
        return len(self._filter(user_id, date_from, date_to))

    def _filter(
        self,
        user_id: str | None,
        date_from: datetime | None,
        date_to: datetime | None,
    ) -> list[AuditLogRecord]:
        found = [
            r
            for r in self.rows
            if (user_id is None or r.user_id == user_id)
            and (date_from is None or r.timestamp >= date_from)
            and (date_to is None or r.timestamp <= date_to)
        ]
        return sorted(found, key=lambda r: (r.timestamp, r.seq or 0), reverse=True)


class StubExtractionProvider(BaseExtractionProvider):
    """Returns a fixed result or raises a fixed error; records every call."""

    name: ClassVar[str] = "stub"

    def __init__(self) -> None:
        self.result = ExtractionResult(
            fields=[
                ExtractedField(kind=FieldKind.LINE, name="Text", value="INVOICE", page_number=1),
                ExtractedField(
                    kind=FieldKind.KEY_VALUE,
                    name="Invoice Number",
                    value="INV-001",
                    confidence=0.97,
                    page_number=1,
                ),
                ExtractedField(
                    kind=FieldKind.TABLE_CELL,
                    name="",
                    value="42.00",
                    table_index=0,
                    row_index=1,
                    column_index=2,
                    page_number=1,
                ),
            ],
            raw_summary="1 page(s)",
            page_count=1,
        )
        self.error: BaseException | None = None
        self.delay = 0.0
        self.calls: list[tuple[bytes, ExtractionMode]] = []

    async def analyze(self, content: bytes, mode: ExtractionMode) -> ExtractionResult:
        self.calls.append((content, mode))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


def make_settings(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "extraction_timeout_seconds": 5,
        "max_retry_attempts": 3,
        "blob_container": "documents",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture()
def field_repo() -> InMemoryFieldRepository:
    return InMemoryFieldRepository()


@pytest.fixture()
def document_repo(field_repo: InMemoryFieldRepository) -> InMemoryDocumentRepository:
    return InMemoryDocumentRepository(field_repo)


@pytest.fixture()
def audit_repo() -> InMemoryAuditLogRepository:
    return InMemoryAuditLogRepository()


@pytest.fixture()
def audit_service(audit_repo: InMemoryAuditLogRepository, clock: FakeClock) -> AuditService:
    return AuditService(audit_repo, AnomalyDetector(audit_repo, clock), clock)  # type: ignore[arg-type]


@pytest.fixture()
def provider() -> StubExtractionProvider:
    return StubExtractionProvider()


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def orchestrator(
    document_repo: InMemoryDocumentRepository,
    field_repo: InMemoryFieldRepository,
    blob_store: InMemoryBlobStore,
    provider: StubExtractionProvider,
    audit_service: AuditService,
    settings: Settings,
    clock: FakeClock,
) -> DocumentOrchestrator:
    return DocumentOrchestrator(
        documents=document_repo,  # type: ignore[arg-type]
        fields=field_repo,  # type: ignore[arg-type]
        blob_store=blob_store,
        provider=provider,
        field_mapper=FieldMapper(),
        audit=audit_service,
        access=AccessPolicy(settings.elevated_roles),
        settings=settings,
        clock=clock,
    )


@pytest.fixture()
def make_orchestrator(
    document_repo: InMemoryDocumentRepository,
    field_repo: InMemoryFieldRepository,
    blob_store: InMemoryBlobStore,
    provider: StubExtractionProvider,
    audit_service: AuditService,
    clock: FakeClock,
):
    """Build an orchestrator over the shared fakes with custom settings."""

    def _make(**overrides: object) -> DocumentOrchestrator:
        custom = make_settings(**overrides)
        return DocumentOrchestrator(
            documents=document_repo,  # type: ignore[arg-type]
            fields=field_repo,  # type: ignore[arg-type]
            blob_store=blob_store,
            provider=provider,
            field_mapper=FieldMapper(),
            audit=audit_service,
            access=AccessPolicy(custom.elevated_roles),
            settings=custom,
            clock=clock,
        )

    return _make
