"""Request and response bodies of the HTTP API."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from docintake.audit.models import AuditSeverity, AuditStatus
from docintake.processor.state_machine import DocumentStatus


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    file_name: str
    file_type: str
    file_size: int
    blob_url: str
    user_id: str
    status: DocumentStatus
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


class FieldResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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


class DocumentDetailResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    document: DocumentResponse
    fields: list[FieldResponse] = Field(default_factory=list)


class DocumentListResponse(BaseModel):
    items: list[DocumentResponse]
    total: int
    page: int
    page_size: int


class ProcessingOutcomeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    document_id: UUID
    status: DocumentStatus
    processed_at: datetime | None = None
    processing_result: str | None = None
    error_message: str | None = None
    fields: list[FieldResponse] = Field(default_factory=list)


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    timestamp: datetime
    action: str
    entity_type: str
    entity_id: str | None = None
    user_id: str | None = None
    status: AuditStatus
    severity: AuditSeverity
    description: str | None = None
    details: str | None = None
    is_anomaly: bool = False
    anomaly_reason: str | None = None


class DocumentUpdateRequest(BaseModel):
    project_name: str | None = Field(default=None, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    document_category: str | None = Field(default=None, max_length=50)
    is_public: bool | None = None


class FieldUpdateRequest(BaseModel):
    value: str | None = Field(default=None, max_length=4000)
