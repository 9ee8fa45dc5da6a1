class ProcessorError(Exception):
    """Base exception for all orchestrator-related errors."""


class ValidationError(ProcessorError):
    """Raised when caller input is malformed. No side effect has happened."""


class DocumentNotAccessibleError(ProcessorError):
    """Raised when a document is absent or the caller may not act on it."""


class DocumentNotFoundError(DocumentNotAccessibleError):
    """Raised when a document does not exist or is soft-deleted."""


class AccessDeniedError(DocumentNotAccessibleError):
    """Raised when the caller is neither owner nor allowed by visibility/role."""


class FieldNotAccessibleError(ProcessorError):
    """Raised when a document field is absent or its document is not the caller's."""


class InvalidStateTransitionError(ProcessorError):
    """Raised when a status change is not allowed or was lost to a concurrent caller."""


class RetryLimitExceededError(InvalidStateTransitionError):
    """Raised when a document has used up its configured retry attempts."""
