class StorageError(Exception):
    """Raised when the blob store cannot complete an operation."""


class BlobNotFoundError(StorageError):
    """Raised when a requested blob does not exist."""
