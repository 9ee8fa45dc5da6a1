"""Document lifecycle statuses and the transitions allowed between them.

    Uploaded -> Processing -> Processed
                           -> Failed
    Processed | Failed -> Retrying -> Uploaded (retry reset)
                                   -> Processing
    Uploaded | Processing -> Cancelled

Processed, Failed and Cancelled are terminal for processing; Processed and
Failed can be re-entered only through a retry.
"""

from enum import Enum

from docintake.processor.exceptions import InvalidStateTransitionError


class DocumentStatus(str, Enum):
    UPLOADED = "Uploaded"
    PROCESSING = "Processing"
    PROCESSED = "Processed"
    FAILED = "Failed"
    RETRYING = "Retrying"
    CANCELLED = "Cancelled"


ALLOWED_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.UPLOADED: frozenset(
        {DocumentStatus.PROCESSING, DocumentStatus.CANCELLED}
    ),
    DocumentStatus.PROCESSING: frozenset(
        {DocumentStatus.PROCESSED, DocumentStatus.FAILED, DocumentStatus.CANCELLED}
    ),
    DocumentStatus.PROCESSED: frozenset({DocumentStatus.RETRYING}),
    DocumentStatus.FAILED: frozenset({DocumentStatus.RETRYING}),
    DocumentStatus.RETRYING: frozenset(
        {DocumentStatus.UPLOADED, DocumentStatus.PROCESSING}
    ),
    DocumentStatus.CANCELLED: frozenset(),
}

RETRYABLE_STATUSES: frozenset[DocumentStatus] = frozenset(
    status
    for status, targets in ALLOWED_TRANSITIONS.items()
    if DocumentStatus.RETRYING in targets
)


def can_transition(source: DocumentStatus, target: DocumentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[source]


def sources_for(target: DocumentStatus) -> frozenset[DocumentStatus]:
    """All statuses from which *target* is directly reachable."""
    return frozenset(
        status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets
    )


def ensure_transition(source: DocumentStatus, target: DocumentStatus) -> None:
    """Raise InvalidStateTransitionError unless source -> target is in the graph."""
    if not can_transition(source, target):
        raise InvalidStateTransitionError(
            f"Cannot move document from {source.value} to {target.value}"
        )
