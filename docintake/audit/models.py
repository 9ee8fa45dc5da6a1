from enum import Enum


class AuditStatus(str, Enum):
    SUCCESS = "Success"
    FAILED = "Failed"
    PENDING = "Pending"
    CANCELLED = "Cancelled"


class AuditSeverity(str, Enum):
    INFO = "Info"
    WARNING = "Warning"
    ERROR = "Error"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    AuditSeverity.INFO: 0,
    AuditSeverity.WARNING: 1,
    AuditSeverity.ERROR: 2,
    AuditSeverity.CRITICAL: 3,
}


class AuditAction:
    """Action tags written by the orchestrator."""

    DOCUMENT_CREATED = "DocumentCreated"
    DOCUMENT_UPDATED = "DocumentUpdated"
    DOCUMENT_PROCESSED = "DocumentProcessed"
    DOCUMENT_RETRY = "DocumentRetry"
    DOCUMENT_DOWNLOADED = "DocumentDownloaded"
    DOCUMENT_DELETED = "DocumentDeleted"
    DOCUMENT_CANCELLED = "DocumentCancelled"
    FIELD_UPDATED = "DocumentFieldUpdated"
    FIELD_VERIFIED = "DocumentFieldVerified"


class EntityType:
    DOCUMENT = "Document"
    DOCUMENT_FIELD = "DocumentField"
