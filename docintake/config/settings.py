from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    db_host: str = "host.docker.internal"
    db_port: int = 5432
    db_database: str = "docintake"
    db_username: str = "docintake"
    db_password: str = "secret"
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10
    db_pool_open_timeout_seconds: float = 10

    blob_root: str = "/app/files"
    blob_container: str = "documents"
    blob_url_base: str = ""

    max_upload_bytes: int = 50 * 1024 * 1024
    allowed_file_types: list[str] = [
        ".pdf",
        ".png",
        ".jpg",
        ".jpeg",
        ".tif",
        ".tiff",
        ".bmp",
    ]
    layout_file_types: list[str] = [".pdf"]

    extraction_provider: str = "local"
    extraction_timeout_seconds: float = 120

    azure_di_endpoint: str = ""
    azure_di_key: str = ""
    azure_di_layout_model: str = "prebuilt-layout"
    azure_di_read_model: str = "prebuilt-read"

    openai_api_key: str = ""
    openai_model_name: str = "gpt-4o-mini"
    openai_timeout_seconds: int = 60
    openai_base_url: str | None = None

    max_retry_attempts: int = 3
    auto_retry_failed: bool = False

    worker_poll_interval_seconds: int = 5
    worker_batch_size: int = 10
    worker_concurrency: int = 4

    elevated_roles: list[str] = ["Admin"]
