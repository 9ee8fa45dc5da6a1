from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from docintake.audit.models import AuditSeverity, AuditStatus
from docintake.processor.state_machine import DocumentStatus


@dataclass
class DocumentRecord:
    """Represents a row from the documents table."""

    id: UUID
    file_name: str
    file_type: str
    file_size: int
    blob_url: str
    container_name: str
    blob_name: str
    user_id: str
    status: DocumentStatus = DocumentStatus.UPLOADED
    processing_type: str | None = None
    uploaded_at: datetime | None = None
    processed_at: datetime | None = None
    last_modified: datetime | None = None
    processing_result: str | None = None
    error_message: str | None = None
    retry_count: int = 0
    project_name: str | None = None
    description: str | None = None
    document_category: str | None = None
    is_public: bool = False
    is_deleted: bool = False


@dataclass
class DocumentFieldRecord:
    """Represents a row from the document_fields table."""

    id: UUID
    document_id: UUID
    field_name: str
    field_value: str | None = None
    field_type: str | None = None
    confidence: float | None = None
    bounding_box: str | None = None
    page_number: int | None = None
    table_index: int | None = None
    row_index: int | None = None
    column_index: int | None = None
    extracted_at: datetime | None = None
    extracted_by: str | None = None
    is_verified: bool = False
    verified_by: str | None = None
    verified_at: datetime | None = None
    notes: str | None = None


@dataclass
class AuditLogRecord:
    """Represents a row from the audit_logs table."""

    id: UUID
    timestamp: datetime
    action: str
    entity_type: str
    entity_id: str | None
    user_id: str | None
    status: AuditStatus = AuditStatus.SUCCESS
    severity: AuditSeverity = AuditSeverity.INFO
    description: str | None = None
    details: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    is_anomaly: bool = False
    anomaly_reason: str | None = None
    seq: int | None = None


DOCUMENT_COLUMNS = (
    "id, file_name, file_type, file_size, blob_url, container_name, blob_name, "
    "user_id, status, processing_type, uploaded_at, processed_at, last_modified, "
    "processing_result, error_message, retry_count, project_name, description, "
    "document_category, is_public, is_deleted"
)

FIELD_COLUMNS = (
    "id, document_id, field_name, field_value, field_type, confidence, "
    "bounding_box, page_number, table_index, row_index, column_index, "
    "extracted_at, extracted_by, is_verified, verified_by, verified_at, notes"
)

AUDIT_COLUMNS = (
    "id, seq, timestamp, action, entity_type, entity_id, user_id, status, "
    "severity, description, details, ip_address, user_agent, is_anomaly, "
    "anomaly_reason"
)


def document_from_row(row: dict) -> DocumentRecord:
    return DocumentRecord(
        id=row["id"],
        file_name=row["file_name"],
        file_type=row["file_type"],
        file_size=row["file_size"],
        blob_url=row["blob_url"],
        container_name=row["container_name"],
        blob_name=row["blob_name"],
        user_id=row["user_id"],
        status=DocumentStatus(row["status"]),
        processing_type=row["processing_type"],
        uploaded_at=row["uploaded_at"],
        processed_at=row["processed_at"],
        last_modified=row["last_modified"],
        processing_result=row["processing_result"],
        error_message=row["error_message"],
        retry_count=row["retry_count"],
        project_name=row["project_name"],
        description=row["description"],
        document_category=row["document_category"],
        is_public=row["is_public"],
        is_deleted=row["is_deleted"],
    )


def field_from_row(row: dict) -> DocumentFieldRecord:
    return DocumentFieldRecord(
        id=row["id"],
        document_id=row["document_id"],
        field_name=row["field_name"],
        field_value=row["field_value"],
        field_type=row["field_type"],
        confidence=row["confidence"],
        bounding_box=row["bounding_box"],
        page_number=row["page_number"],
        table_index=row["table_index"],
        row_index=row["row_index"],
        column_index=row["column_index"],
        extracted_at=row["extracted_at"],
        extracted_by=row["extracted_by"],
        is_verified=row["is_verified"],
        verified_by=row["verified_by"],
        verified_at=row["verified_at"],
        notes=row["notes"],
    )


def audit_from_row(row: dict) -> AuditLogRecord:
    return AuditLogRecord(
        id=row["id"],
        seq=row["seq"],
        timestamp=row["timestamp"],
        action=row["action"],
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        user_id=row["user_id"],
        status=AuditStatus(row["status"]),
        severity=AuditSeverity(row["severity"]),
        description=row["description"],
        details=row["details"],
        ip_address=row["ip_address"],
        user_agent=row["user_agent"],
        is_anomaly=row["is_anomaly"],
        anomaly_reason=row["anomaly_reason"],
    )
