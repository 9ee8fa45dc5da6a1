from abc import ABC, abstractmethod
from datetime import datetime


class BaseBlobStore(ABC):
    """Contract for blob storage adapters.

    Blobs are addressed by (container, blob name) and never mutated in place:
    every upload gets a fresh name. A successful upload must be readable by
    the next download.
    """

    @abstractmethod
    async def upload(
        self,
        content: bytes,
        logical_name: str,
        container: str,
        content_type: str | None = None,
    ) -> str:
        """Store bytes under a fresh blob name derived from logical_name.

        Returns:
            The generated blob name.

        Raises:
            StorageError: if the write fails.
        """

    @abstractmethod
    async def download(self, blob_name: str, container: str) -> bytes:
        """Raises BlobNotFoundError if missing, StorageError on other failures."""

    @abstractmethod
    async def delete(self, blob_name: str, container: str) -> bool:
        """Return True if a blob was removed."""

    @abstractmethod
    async def exists(self, blob_name: str, container: str) -> bool: ...

    @abstractmethod
    async def get_url(
        self, blob_name: str, container: str, expiry: datetime | None = None
    ) -> str: ...
