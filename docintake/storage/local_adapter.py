import asyncio
import os
import re
import tempfile
import uuid
from datetime import datetime
from pathlib import Path
from urllib.parse import quote

from docintake.logging.logger import Log
from docintake.storage.base import BaseBlobStore
from docintake.storage.exceptions import BlobNotFoundError, StorageError

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_blob_suffix(logical_name: str) -> str:
    """Reduce a user-supplied file name to a filesystem-safe token."""
    name = Path(logical_name).name
    name = _UNSAFE_CHARS.sub("_", name).strip("._")
    return name[:120] or "file"


class LocalBlobStore(BaseBlobStore):
    """Stores blobs on the local filesystem: {root}/{container}/{uuid}_{name}."""

    def __init__(self, root: Path, url_base: str = "") -> None:
        self._root = root
        self._url_base = url_base.rstrip("/")

    async def upload(
        self,
        content: bytes,
        logical_name: str,
        container: str,
        content_type: str | None = None,
    ) -> str:
        blob_name = f"{uuid.uuid4()}_{safe_blob_suffix(logical_name)}"
        path = self._resolve_path(blob_name, container)
        try:
            await asyncio.to_thread(self._write_atomic, path, content)
        except OSError as exc:
            raise StorageError(f"Failed to write blob {container}/{blob_name}: {exc}") from exc
        Log.debug(
            "Blob uploaded",
            container=container,
            blob_name=blob_name,
            size=len(content),
            content_type=content_type,
        )
        return blob_name

    async def download(self, blob_name: str, container: str) -> bytes:
        path = self._resolve_path(blob_name, container)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise BlobNotFoundError(f"Blob not found: {container}/{blob_name}") from exc
        except OSError as exc:
            raise StorageError(f"Failed to read blob {container}/{blob_name}: {exc}") from exc

    async def delete(self, blob_name: str, container: str) -> bool:
        path = self._resolve_path(blob_name, container)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"Failed to delete blob {container}/{blob_name}: {exc}") from exc
        return True

    async def exists(self, blob_name: str, container: str) -> bool:
        path = self._resolve_path(blob_name, container)
        return await asyncio.to_thread(path.is_file)

    async def get_url(
        self, blob_name: str, container: str, expiry: datetime | None = None
    ) -> str:
        if self._url_base:
            url = f"{self._url_base}/{quote(container)}/{quote(blob_name)}"
        else:
            url = self._resolve_path(blob_name, container).resolve().as_uri()
        if expiry is not None:
            url = f"{url}?expires={quote(expiry.isoformat())}"
        return url

    def _resolve_path(self, blob_name: str, container: str) -> Path:
        for part in (container, blob_name):
            if not part or part in (".", "..") or Path(part).name != part:
                raise StorageError(f"Invalid blob address: {container}/{blob_name}")
        return self._root / container / blob_name

    @staticmethod
    def _write_atomic(path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".upload-")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
