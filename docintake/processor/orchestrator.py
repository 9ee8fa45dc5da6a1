import asyncio
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from uuid import UUID

from docintake.audit.anomaly import AnomalyDetector
from docintake.audit.audit_service import AuditService
from docintake.audit.models import AuditAction, AuditSeverity, AuditStatus, EntityType
from docintake.config.settings import Settings
from docintake.database.connection import Database
from docintake.database.models import AuditLogRecord, DocumentFieldRecord, DocumentRecord
from docintake.database.repositories.audit_log_repository import AuditLogRepository
from docintake.database.repositories.document_field_repository import DocumentFieldRepository
from docintake.database.repositories.document_repository import DocumentRepository
from docintake.extraction.base import BaseExtractionProvider
from docintake.extraction.exceptions import ExtractionError
from docintake.extraction.factory import ExtractionProviderFactory
from docintake.extraction.field_mapper import FieldMapper
from docintake.extraction.models import ExtractionMode, ExtractionResult
from docintake.logging.logger import Log
from docintake.processor.access import AccessPolicy
from docintake.processor.exceptions import (
    AccessDeniedError,
    DocumentNotFoundError,
    FieldNotAccessibleError,
    InvalidStateTransitionError,
    RetryLimitExceededError,
    ValidationError,
)
from docintake.processor.models import (
    DocumentDetails,
    DocumentSearch,
    DocumentUpdate,
    DownloadedDocument,
    NewDocument,
    Principal,
    ProcessingOutcome,
)
from docintake.processor.state_machine import (
    RETRYABLE_STATUSES,
    DocumentStatus,
    ensure_transition,
    sources_for,
)
from docintake.storage.base import BaseBlobStore
from docintake.storage.exceptions import StorageError
from docintake.storage.local_adapter import LocalBlobStore

MAX_SUMMARY_LENGTH = 1000
MAX_ERROR_LENGTH = 500
MAX_PAGE_SIZE = 100

# Column widths of the documents table.
METADATA_LIMITS = {
    "file_name": 255,
    "project_name": 100,
    "description": 500,
    "document_category": 50,
}


class DocumentOrchestrator:
    """Drives documents through Uploaded -> Processing -> Processed | Failed.

    Every status change is a compare-and-swap in the repository, so concurrent
    callers (upload trigger, manual retry, background sweep) cannot both win.
    Provider failures and timeouts end in the Failed state instead of raising.
    Every state-changing operation writes one audit event.
    """

    def __init__(
        self,
        *,
        documents: DocumentRepository,
        fields: DocumentFieldRepository,
        blob_store: BaseBlobStore,
        provider: BaseExtractionProvider,
        field_mapper: FieldMapper,
        audit: AuditService,
        access: AccessPolicy,
        settings: Settings,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._documents = documents
        self._fields = fields
        self._blob_store = blob_store
        self._provider = provider
        self._field_mapper = field_mapper
        self._audit = audit
        self._access = access
        self._settings = settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # -- lifecycle -------------------------------------------------------

    async def create(
        self, content: bytes, metadata: NewDocument, principal: Principal
    ) -> DocumentRecord:
        """Store the bytes, then insert the Uploaded row.

        Raises:
            ValidationError: before any side effect, on malformed input.
            StorageError: if the blob write fails; no row is created.
        """
        file_type = self._validate_upload(content, metadata, principal)
        container = self._settings.blob_container

        blob_name = await self._blob_store.upload(
            content, metadata.file_name, container, metadata.content_type
        )
        try:
            record = DocumentRecord(
                id=uuid.uuid4(),
                file_name=metadata.file_name,
                file_type=file_type,
                file_size=len(content),
                blob_url=await self._blob_store.get_url(blob_name, container),
                container_name=container,
                blob_name=blob_name,
                user_id=str(principal.user_id),
                status=DocumentStatus.UPLOADED,
                project_name=metadata.project_name,
                description=metadata.description,
                document_category=metadata.document_category,
                is_public=metadata.is_public,
            )
            document = await self._documents.create(record)
        except Exception:
            await self._discard_blob(blob_name, container)
            raise

        Log.info(f"Document {document.id} created ({document.file_size} bytes)")
        await self._audit.log_event(
            AuditAction.DOCUMENT_CREATED,
            EntityType.DOCUMENT,
            str(document.id),
            principal.user_id,
            f"Uploaded {document.file_name}",
        )
        return document

    async def process(
        self, document_id: UUID, principal: Principal | None = None
    ) -> ProcessingOutcome:
        """Claim the document, run extraction, and persist the outcome.

        Extraction failures (provider error, malformed response, timeout,
        unreadable blob) are recorded as the Failed state, not raised.

        Raises:
            DocumentNotAccessibleError: document missing or not modifiable by principal.
            InvalidStateTransitionError: document is not waiting for processing,
                including when a concurrent caller claimed it first.
        """
        principal = principal or Principal.system()
        document = await self._get_modifiable(document_id, principal)
        ensure_transition(document.status, DocumentStatus.PROCESSING)

        claimed = await self._documents.transition(
            document_id, sources_for(DocumentStatus.PROCESSING), DocumentStatus.PROCESSING
        )
        if claimed is None:
            raise InvalidStateTransitionError(
                f"Document {document_id} is already being processed or changed state"
            )

        mode = self.select_mode(claimed.file_type)
        processing_type = f"{self._provider.name}/{mode.value}"
        Log.info(f"Processing document {document_id} in {mode.value} mode")

        try:
            result = await self._extract(claimed, mode)
            fields = self._field_mapper.map(document_id, result, self._provider.name)
        except (asyncio.TimeoutError, TimeoutError):
            timeout = self._settings.extraction_timeout_seconds
            return await self._fail(
                claimed, principal, f"Extraction timed out after {timeout}s", processing_type
            )
        except (ExtractionError, StorageError) as exc:
            return await self._fail(
                claimed, principal, f"{type(exc).__name__}: {exc}", processing_type
            )
        except Exception as exc:
            Log.exception(f"Unexpected extraction failure for document {document_id}")
            return await self._fail(
                claimed,
                principal,
                f"Unexpected extraction failure: {type(exc).__name__}: {exc}",
                processing_type,
            )

        summary = self._summary(fields, result)
        try:
            processed = await self._documents.complete_processing(
                document_id, fields, summary, processing_type
            )
        except Exception as exc:
            Log.exception(f"Persisting extraction result for {document_id} failed")
            return await self._fail(
                claimed, principal, f"Failed to store extraction result: {exc}", processing_type
            )

        if processed is None:
            return await self._discarded(document_id, principal)

        Log.info(f"Document {document_id} processed: {len(fields)} fields")
        await self._audit.log_event(
            AuditAction.DOCUMENT_PROCESSED,
            EntityType.DOCUMENT,
            str(document_id),
            processed.user_id,
            summary,
            self._triggered_by(principal),
        )
        return self._outcome(processed, fields)

    async def retry_processing(
        self, document_id: UUID, principal: Principal
    ) -> DocumentRecord:
        """Drop prior fields and hand the document back to Uploaded.

        Does not run extraction; a later process() call (or the worker) does.

        Raises:
            RetryLimitExceededError: retry_count reached max_retry_attempts.
            InvalidStateTransitionError: document is not Failed or Processed.
        """
        document = await self._get_modifiable(document_id, principal)
        if document.status not in RETRYABLE_STATUSES:
            raise InvalidStateTransitionError(
                f"Cannot retry document {document_id} in status {document.status.value}"
            )
        ceiling = self._retry_ceiling()
        if ceiling is not None and document.retry_count >= ceiling:
            raise RetryLimitExceededError(
                f"Document {document_id} reached the retry limit of {ceiling}"
            )

        reset = await self._documents.reset_for_retry(document_id, RETRYABLE_STATUSES, ceiling)
        if reset is None:
            raise InvalidStateTransitionError(
                f"Document {document_id} changed state during retry"
            )

        Log.info(f"Document {document_id} reset for retry #{reset.retry_count}")
        await self._audit.log_event(
            AuditAction.DOCUMENT_RETRY,
            EntityType.DOCUMENT,
            str(document_id),
            principal.user_id,
            f"Retry #{reset.retry_count} requested",
            f"previous_status={document.status.value}",
        )
        return reset

    async def download(
        self, document_id: UUID, principal: Principal
    ) -> DownloadedDocument:
        document = await self._get_accessible(document_id, principal)
        content = await self._blob_store.download(document.blob_name, document.container_name)
        await self._audit.log_event(
            AuditAction.DOCUMENT_DOWNLOADED,
            EntityType.DOCUMENT,
            str(document_id),
            principal.user_id,
            f"Downloaded {document.file_name}",
        )
        return DownloadedDocument(
            file_name=document.file_name,
            file_type=document.file_type,
            content=content,
        )

    async def delete(self, document_id: UUID, principal: Principal) -> None:
        """Soft delete. Blob bytes and audit history are retained."""
        await self._get_modifiable(document_id, principal)
        if not await self._documents.soft_delete(document_id):
            raise DocumentNotFoundError(f"Document {document_id} not found")
        Log.info(f"Document {document_id} soft-deleted")
        await self._audit.log_event(
            AuditAction.DOCUMENT_DELETED,
            EntityType.DOCUMENT,
            str(document_id),
            principal.user_id,
            "Document soft-deleted",
        )

    async def cancel_document(
        self, document_id: UUID, principal: Principal
    ) -> DocumentRecord:
        document = await self._get_modifiable(document_id, principal)
        ensure_transition(document.status, DocumentStatus.CANCELLED)
        cancelled = await self._documents.cancel(
            document_id, sources_for(DocumentStatus.CANCELLED)
        )
        if cancelled is None:
            raise InvalidStateTransitionError(
                f"Document {document_id} changed state before it could be cancelled"
            )
        Log.info(f"Document {document_id} cancelled from {document.status.value}")
        await self._audit.log_event(
            AuditAction.DOCUMENT_CANCELLED,
            EntityType.DOCUMENT,
            str(document_id),
            principal.user_id,
            f"Cancelled while {document.status.value}",
        )
        return cancelled

    # -- queries and metadata -------------------------------------------

    async def get_document(self, document_id: UUID, principal: Principal) -> DocumentDetails:
        document = await self._get_accessible(document_id, principal)
        fields = await self._fields.list_by_document(document_id)
        return DocumentDetails(document=document, fields=fields)

    async def get_documents_by_user(
        self, principal: Principal, search: DocumentSearch | None = None
    ) -> list[DocumentRecord]:
        search = search or DocumentSearch()
        if search.page < 1 or not 1 <= search.page_size <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"page must be >= 1 and page_size between 1 and {MAX_PAGE_SIZE}"
            )
        return await self._documents.search(self._require_user(principal), search)

    async def get_document_count(self, principal: Principal) -> int:
        return await self._documents.count_by_owner(self._require_user(principal))

    async def get_document_categories(self, principal: Principal) -> list[str]:
        return await self._documents.categories_by_owner(self._require_user(principal))

    async def is_document_accessible(self, document_id: UUID, principal: Principal) -> bool:
        document = await self._documents.find_by_id(document_id)
        return document is not None and self._access.can_access(document, principal)

    async def update_document(
        self, document_id: UUID, update: DocumentUpdate, principal: Principal
    ) -> DocumentRecord:
        await self._get_modifiable(document_id, principal)
        updated = await self._documents.update_metadata(document_id, update)
        if updated is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        changed = [name for name, value in vars(update).items() if value is not None]
        await self._audit.log_event(
            AuditAction.DOCUMENT_UPDATED,
            EntityType.DOCUMENT,
            str(document_id),
            principal.user_id,
            "Document metadata updated",
            f"changed={','.join(changed)}",
        )
        return updated

    async def get_processing_result(
        self, document_id: UUID, principal: Principal
    ) -> ProcessingOutcome:
        document = await self._get_accessible(document_id, principal)
        fields = await self._fields.list_by_document(document_id)
        return self._outcome(document, fields)

    async def get_document_fields(
        self, document_id: UUID, principal: Principal
    ) -> list[DocumentFieldRecord]:
        await self._get_accessible(document_id, principal)
        return await self._fields.list_by_document(document_id)

    async def update_document_field(
        self, field_id: UUID, value: str | None, principal: Principal
    ) -> DocumentFieldRecord:
        field = await self._get_modifiable_field(field_id, principal)
        updated = await self._fields.update_value(field_id, value)
        if updated is None:
            raise FieldNotAccessibleError(f"Field {field_id} not found")
        await self._audit.log_event(
            AuditAction.FIELD_UPDATED,
            EntityType.DOCUMENT_FIELD,
            str(field_id),
            principal.user_id,
            f"Field {field.field_name} of document {field.document_id} edited",
        )
        return updated

    async def verify_document_field(
        self, field_id: UUID, principal: Principal
    ) -> DocumentFieldRecord:
        field = await self._get_modifiable_field(field_id, principal)
        verified = await self._fields.mark_verified(
            field_id, str(principal.user_id), self._clock()
        )
        if verified is None:
            raise FieldNotAccessibleError(f"Field {field_id} not found")
        await self._audit.log_event(
            AuditAction.FIELD_VERIFIED,
            EntityType.DOCUMENT_FIELD,
            str(field_id),
            principal.user_id,
            f"Field {field.field_name} of document {field.document_id} verified",
        )
        return verified

    async def get_document_audit_trail(
        self, document_id: UUID, principal: Principal
    ) -> list[AuditLogRecord]:
        """Audit history of a document, including after it was soft-deleted."""
        document = await self._documents.find_by_id(document_id, include_deleted=True)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        if not self._access.can_view_history(document, principal):
            raise AccessDeniedError(f"Audit history of document {document_id} denied")
        return await self._audit.get_audit_logs_by_entity(EntityType.DOCUMENT, str(document_id))

    def select_mode(self, file_type: str) -> ExtractionMode:
        """Layout mode for document-like types, free-text read mode otherwise."""
        layout_types = {t.lower() for t in self._settings.layout_file_types}
        return ExtractionMode.LAYOUT if file_type.lower() in layout_types else ExtractionMode.READ

    # -- helpers ---------------------------------------------------------

    def _validate_upload(
        self, content: bytes, metadata: NewDocument, principal: Principal
    ) -> str:
        if not principal.user_id:
            raise ValidationError("Owning user id is required")
        if not content:
            raise ValidationError("File content is empty")
        if not metadata.file_name or not metadata.file_name.strip():
            raise ValidationError("File name is required")
        for name, limit in METADATA_LIMITS.items():
            value = getattr(metadata, name)
            if value is not None and len(value) > limit:
                raise ValidationError(f"{name} exceeds {limit} characters")
        if metadata.file_size is not None and metadata.file_size != len(content):
            raise ValidationError(
                f"Declared size {metadata.file_size} does not match content size {len(content)}"
            )
        if len(content) > self._settings.max_upload_bytes:
            raise ValidationError(
                f"File exceeds the upload limit of {self._settings.max_upload_bytes} bytes"
            )
        file_type = Path(metadata.file_name).suffix.lower()
        allowed = {t.lower() for t in self._settings.allowed_file_types}
        if file_type not in allowed:
            raise ValidationError(
                f"File type '{file_type or '(none)'}' is not allowed. Allowed: {sorted(allowed)}"
            )
        return file_type

    async def _discard_blob(self, blob_name: str, container: str) -> None:
        try:
            await self._blob_store.delete(blob_name, container)
        except Exception:
            Log.exception(f"Could not remove orphaned blob {container}/{blob_name}")

    async def _extract(self, document: DocumentRecord, mode: ExtractionMode) -> ExtractionResult:
        content = await self._blob_store.download(document.blob_name, document.container_name)
        return await asyncio.wait_for(
            self._provider.analyze(content, mode),
            timeout=self._settings.extraction_timeout_seconds,
        )

    async def _fail(
        self,
        document: DocumentRecord,
        principal: Principal,
        error_message: str,
        processing_type: str,
    ) -> ProcessingOutcome:
        error_message = error_message[:MAX_ERROR_LENGTH]
        Log.error(f"Processing document {document.id} failed: {error_message}")
        failed = await self._documents.mark_failed(document.id, error_message, processing_type)
        if failed is None:
            return await self._discarded(document.id, principal)
        await self._audit.log_event(
            AuditAction.DOCUMENT_PROCESSED,
            EntityType.DOCUMENT,
            str(document.id),
            document.user_id,
            "Processing failed",
            f"{self._triggered_by(principal)}; {error_message}",
            status=AuditStatus.FAILED,
            severity=AuditSeverity.ERROR,
        )
        return self._outcome(failed, [])

    async def _discarded(self, document_id: UUID, principal: Principal) -> ProcessingOutcome:
        """The document left Processing (e.g. cancelled) while extraction ran."""
        current = await self._documents.find_by_id(document_id, include_deleted=True)
        if current is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        Log.warning(
            f"Discarding extraction result for {document_id}: "
            f"status is now {current.status.value}"
        )
        await self._audit.log_event(
            AuditAction.DOCUMENT_PROCESSED,
            EntityType.DOCUMENT,
            str(document_id),
            current.user_id,
            f"Result discarded, document is {current.status.value}",
            self._triggered_by(principal),
            status=AuditStatus.CANCELLED,
            severity=AuditSeverity.WARNING,
        )
        return self._outcome(current, [])

    async def _get_accessible(self, document_id: UUID, principal: Principal) -> DocumentRecord:
        document = await self._documents.find_by_id(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        if not self._access.can_access(document, principal):
            raise AccessDeniedError(f"Access to document {document_id} denied")
        return document

    async def _get_modifiable(self, document_id: UUID, principal: Principal) -> DocumentRecord:
        document = await self._documents.find_by_id(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        if not self._access.can_modify(document, principal):
            raise AccessDeniedError(f"Modification of document {document_id} denied")
        return document

    async def _get_modifiable_field(
        self, field_id: UUID, principal: Principal
    ) -> DocumentFieldRecord:
        field = await self._fields.find_by_id(field_id)
        if field is None:
            raise FieldNotAccessibleError(f"Field {field_id} not found")
        document = await self._documents.find_by_id(field.document_id)
        if document is None or not self._access.can_modify(document, principal):
            raise FieldNotAccessibleError(f"Field {field_id} not accessible")
        return field

    @staticmethod
    def _triggered_by(principal: Principal) -> str:
        """Acting caller of a processing event; the event itself belongs to the owner."""
        return f"triggered_by={principal.user_id or 'system'}"

    @staticmethod
    def _require_user(principal: Principal) -> str:
        if not principal.user_id:
            raise ValidationError("User id is required")
        return principal.user_id

    def _retry_ceiling(self) -> int | None:
        ceiling = self._settings.max_retry_attempts
        return ceiling if ceiling > 0 else None

    @staticmethod
    def _summary(fields: list[DocumentFieldRecord], result: ExtractionResult) -> str:
        summary = f"Successfully processed {len(fields)} fields"
        if result.raw_summary:
            summary = f"{summary} ({result.raw_summary})"
        return summary[:MAX_SUMMARY_LENGTH]

    @staticmethod
    def _outcome(
        document: DocumentRecord, fields: list[DocumentFieldRecord]
    ) -> ProcessingOutcome:
        return ProcessingOutcome(
            document_id=document.id,
            status=document.status,
            processed_at=document.processed_at,
            processing_result=document.processing_result,
            error_message=document.error_message,
            fields=fields,
        )


def build_orchestrator(settings: Settings, database: Database) -> DocumentOrchestrator:
    """Build a DocumentOrchestrator with all required adapters."""
    audit_repo = AuditLogRepository(database)
    return DocumentOrchestrator(
        documents=DocumentRepository(database),
        fields=DocumentFieldRepository(database),
        blob_store=LocalBlobStore(Path(settings.blob_root), url_base=settings.blob_url_base),
        provider=ExtractionProviderFactory.create(settings),
        field_mapper=FieldMapper(),
        audit=AuditService(audit_repo, AnomalyDetector(audit_repo)),
        access=AccessPolicy(settings.elevated_roles),
        settings=settings,
    )
