from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from docintake.database.models import DocumentFieldRecord, DocumentRecord
from docintake.processor.state_machine import DocumentStatus

SYSTEM_ROLE = "System"


@dataclass(frozen=True)
class Principal:
    """Caller identity handed in by the identity provider. Never authenticated here."""

    user_id: str | None
    roles: frozenset[str] = frozenset()

    @classmethod
    def system(cls) -> "Principal":
        """Identity for scheduled/background actions (no user)."""
        return cls(user_id=None, roles=frozenset({SYSTEM_ROLE}))


@dataclass(frozen=True)
class NewDocument:
    """Metadata accompanying an upload."""

    file_name: str
    file_size: int | None = None
    content_type: str | None = None
    project_name: str | None = None
    description: str | None = None
    document_category: str | None = None
    is_public: bool = False


@dataclass(frozen=True)
class DocumentUpdate:
    """Editable document metadata. None leaves a value unchanged."""

    project_name: str | None = None
    description: str | None = None
    document_category: str | None = None
    is_public: bool | None = None


@dataclass(frozen=True)
class DocumentSearch:
    search_term: str | None = None
    status: DocumentStatus | None = None
    category: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    page: int = 1
    page_size: int = 10


@dataclass
class DocumentDetails:
    document: DocumentRecord
    fields: list[DocumentFieldRecord] = field(default_factory=list)


@dataclass
class ProcessingOutcome:
    document_id: UUID
    status: DocumentStatus
    processed_at: datetime | None
    processing_result: str | None
    error_message: str | None
    fields: list[DocumentFieldRecord] = field(default_factory=list)


@dataclass(frozen=True)
class DownloadedDocument:
    file_name: str
    file_type: str
    content: bytes
