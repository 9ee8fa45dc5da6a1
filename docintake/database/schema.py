"""DDL for the documents, document_fields and audit_logs tables."""

from docintake.database.connection import Database
from docintake.logging.logger import Log

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS documents (
        id                UUID PRIMARY KEY,
        file_name         VARCHAR(255) NOT NULL,
        file_type         VARCHAR(50)  NOT NULL,
        file_size         BIGINT       NOT NULL CHECK (file_size > 0),
        blob_url          VARCHAR(500) NOT NULL,
        container_name    VARCHAR(100) NOT NULL,
        blob_name         VARCHAR(400) NOT NULL,
        user_id           VARCHAR(450) NOT NULL,
        status            VARCHAR(20)  NOT NULL DEFAULT 'Uploaded'
            CHECK (status IN ('Uploaded', 'Processing', 'Processed',
                              'Failed', 'Retrying', 'Cancelled')),
        processing_type   VARCHAR(50),
        uploaded_at       TIMESTAMPTZ  NOT NULL DEFAULT NOW(),
        processed_at      TIMESTAMPTZ,
        last_modified     TIMESTAMPTZ,
        processing_result VARCHAR(1000),
        error_message     VARCHAR(500),
        retry_count       INTEGER      NOT NULL DEFAULT 0 CHECK (retry_count >= 0),
        project_name      VARCHAR(100),
        description       VARCHAR(500),
        document_category VARCHAR(50),
        is_public         BOOLEAN      NOT NULL DEFAULT FALSE,
        is_deleted        BOOLEAN      NOT NULL DEFAULT FALSE
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_documents_owner
        ON documents (user_id, is_deleted, uploaded_at DESC)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_documents_status
        ON documents (status) WHERE NOT is_deleted
    """,
    """
    CREATE TABLE IF NOT EXISTS document_fields (
        id            UUID PRIMARY KEY,
        document_id   UUID NOT NULL REFERENCES documents (id) ON DELETE CASCADE,
        field_name    VARCHAR(100) NOT NULL,
        field_value   TEXT,
        field_type    VARCHAR(50),
        confidence    DOUBLE PRECISION
            CHECK (confidence IS NULL OR (confidence >= 0 AND confidence <= 1)),
        bounding_box  TEXT,
        page_number   INTEGER,
        table_index   INTEGER,
        row_index     INTEGER,
        column_index  INTEGER,
        extracted_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        extracted_by  VARCHAR(100),
        is_verified   BOOLEAN NOT NULL DEFAULT FALSE,
        verified_by   VARCHAR(450),
        verified_at   TIMESTAMPTZ,
        notes         VARCHAR(500)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_document_fields_document
        ON document_fields (document_id)
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_logs (
        id             UUID PRIMARY KEY,
        seq            BIGSERIAL UNIQUE,
        timestamp      TIMESTAMPTZ  NOT NULL,
        action         VARCHAR(100) NOT NULL,
        entity_type    VARCHAR(100) NOT NULL,
        entity_id      VARCHAR(450),
        user_id        VARCHAR(450),
        status         VARCHAR(20)  NOT NULL DEFAULT 'Success',
        severity       VARCHAR(20)  NOT NULL DEFAULT 'Info',
        description    VARCHAR(500),
        details        VARCHAR(1000),
        ip_address     VARCHAR(50),
        user_agent     VARCHAR(500),
        is_anomaly     BOOLEAN      NOT NULL DEFAULT FALSE,
        anomaly_reason VARCHAR(500)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_audit_logs_user_time
        ON audit_logs (user_id, timestamp)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_audit_logs_entity
        ON audit_logs (entity_type, entity_id)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_audit_logs_anomalies
        ON audit_logs (timestamp) WHERE is_anomaly
    """,
)


async def apply_schema(database: Database) -> None:
    """Create tables and indexes if they do not exist yet."""
    async with database.connection() as conn:
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(statement)
        await conn.commit()
    Log.info(f"Schema verified ({len(SCHEMA_STATEMENTS)} statements)")
