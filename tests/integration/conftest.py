import os
import uuid
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from docintake.config.settings import Settings
from docintake.database.connection import Database
from docintake.database.models import DocumentRecord
from docintake.database.repositories.document_repository import DocumentRepository
from docintake.database.schema import apply_schema


def _test_settings() -> Settings:
    return Settings(
        db_database=os.environ.get("DB_DATABASE", "docintake_test"),
        db_pool_open_timeout_seconds=float(os.environ.get("DB_POOL_OPEN_TIMEOUT_SECONDS", "3")),
    )


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest_asyncio.fixture
async def database(test_settings: Settings) -> AsyncIterator[Database]:
    db = Database(test_settings)
    try:
        await db.open()
        await apply_schema(db)
    except Exception as e:
        await db.close()
        pytest.skip(
            f"PostgreSQL test DB not available: {e}. "
            "Set DB_* env or see tests/integration/README.md"
        )
    try:
        yield db
    finally:
        await db.close()


@pytest.fixture
def user_id() -> str:
    """A fresh owner per test so rows from other tests never interfere."""
    return f"it-{uuid.uuid4()}"


@pytest_asyncio.fixture
async def integration_cleanup(
    database: Database, user_id: str
) -> AsyncIterator[None]:
    yield
    async with database.connection() as conn:
        await conn.execute("DELETE FROM documents WHERE user_id = %s", (user_id,))
        await conn.execute("DELETE FROM audit_logs WHERE user_id = %s", (user_id,))
        await conn.commit()


@pytest_asyncio.fixture
async def seed_document(
    database: Database, user_id: str, integration_cleanup: None
) -> DocumentRecord:
    document_id = uuid.uuid4()
    return await DocumentRepository(database).create(
        DocumentRecord(
            id=document_id,
            file_name="invoice.pdf",
            file_type=".pdf",
            file_size=1024,
            blob_url=f"file:///tmp/documents/{document_id}",
            container_name="documents",
            blob_name=f"{document_id}_invoice.pdf",
            user_id=user_id,
            document_category="bills",
        )
    )
