from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from docintake.storage.exceptions import BlobNotFoundError, StorageError
from docintake.storage.local_adapter import LocalBlobStore, safe_blob_suffix


class TestSafeBlobSuffix:
    def test_keeps_plain_names(self) -> None:
        assert safe_blob_suffix("invoice.pdf") == "invoice.pdf"

    def test_strips_directories(self) -> None:
        assert safe_blob_suffix("../../etc/passwd") == "passwd"

    def test_replaces_unsafe_characters(self) -> None:
        assert safe_blob_suffix("my scan (1).png") == "my_scan_1_.png"

    def test_empty_result_falls_back(self) -> None:
        assert safe_blob_suffix("...") == "file"


class TestUploadDownload:
    @pytest.mark.asyncio
    async def test_upload_then_download(self, tmp_path: Path) -> None:
        store = LocalBlobStore(tmp_path)

        blob_name = await store.upload(b"%PDF-1.4", "invoice.pdf", "documents")

        assert blob_name.endswith("_invoice.pdf")
        assert (tmp_path / "documents" / blob_name).read_bytes() == b"%PDF-1.4"
        assert await store.download(blob_name, "documents") == b"%PDF-1.4"

    @pytest.mark.asyncio
    async def test_same_logical_name_gets_distinct_blobs(self, tmp_path: Path) -> None:
        store = LocalBlobStore(tmp_path)

        first = await store.upload(b"a", "invoice.pdf", "documents")
        second = await store.upload(b"b", "invoice.pdf", "documents")

        assert first != second

    @pytest.mark.asyncio
    async def test_no_temporary_files_left_behind(self, tmp_path: Path) -> None:
        store = LocalBlobStore(tmp_path)

        await store.upload(b"data", "a.pdf", "documents")

        assert [p.name for p in (tmp_path / "documents").iterdir() if p.name.startswith(".")] == []

    @pytest.mark.asyncio
    async def test_write_failure_raises_storage_error(self, tmp_path: Path) -> None:
        store = LocalBlobStore(tmp_path)

        with patch.object(LocalBlobStore, "_write_atomic", side_effect=PermissionError("denied")):
            with pytest.raises(StorageError, match="Failed to write blob"):
                await store.upload(b"data", "a.pdf", "documents")

    @pytest.mark.asyncio
    async def test_missing_blob_raises_not_found(self, tmp_path: Path) -> None:
        store = LocalBlobStore(tmp_path)

        with pytest.raises(BlobNotFoundError):
            await store.download("nope.pdf", "documents")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("blob_name", "container"), [("../x", "documents"), ("x", ".."), ("", "documents")])
    async def test_rejects_path_traversal(self, tmp_path: Path, blob_name: str, container: str) -> None:
        store = LocalBlobStore(tmp_path)

        with pytest.raises(StorageError, match="Invalid blob address"):
            await store.download(blob_name, container)


class TestDeleteExists:
    @pytest.mark.asyncio
    async def test_delete_removes_blob(self, tmp_path: Path) -> None:
        store = LocalBlobStore(tmp_path)
        blob_name = await store.upload(b"data", "a.pdf", "documents")

        assert await store.delete(blob_name, "documents") is True
        assert await store.exists(blob_name, "documents") is False

    @pytest.mark.asyncio
    async def test_delete_missing_returns_false(self, tmp_path: Path) -> None:
        store = LocalBlobStore(tmp_path)

        assert await store.delete("missing.pdf", "documents") is False


class TestGetUrl:
    @pytest.mark.asyncio
    async def test_file_uri_without_base(self, tmp_path: Path) -> None:
        store = LocalBlobStore(tmp_path)

        url = await store.get_url("a.pdf", "documents")

        assert url.startswith("file://")
        assert url.endswith("/documents/a.pdf")

    @pytest.mark.asyncio
    async def test_base_url_and_expiry(self, tmp_path: Path) -> None:
        store = LocalBlobStore(tmp_path, url_base="https://files.example.com/")
        expiry = datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)

        url = await store.get_url("a b.pdf", "documents", expiry)

        assert url.startswith("https://files.example.com/documents/a%20b.pdf?expires=2026-01-15T10")
