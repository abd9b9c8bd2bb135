"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API
    api_version: str = "0.1.0"
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///./plumbcat.db"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Image hosting
    image_public_base_url: str = "https://cdn.example.com/catalog"
    image_upload_url: str = "https://cdn.example.com/upload"
    image_upload_token: str = ""
    image_max_bytes: int = 10 * 1024 * 1024
    image_download_timeout: float = 30.0
    image_rehost_concurrency: int = 3
    image_rehost_pause_seconds: float = 0.5

    # Bulk import
    import_batch_size: int = 100
    import_batch_pause_seconds: float = 1.0
    default_import_path: str = "data/products.json"
    report_dir: str = "reports"

    # Catalog
    recount_on_write: bool = True

    class Config:
        """Pydantic configuration."""

        env_prefix = "PLUMBCAT_"
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
