"""Backend configuration with environment variable support.

All settings can be overridden via environment variables prefixed with ``HUDDLE_``,
or via a ``.env`` file in the project root.

Examples::

    HUDDLE_PORT=9000 huddle serve
    HUDDLE_DATA_DIR=/var/data/huddle huddle serve
    HUDDLE_LOG_LEVEL=DEBUG huddle serve
"""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root: two levels up from this file (backend/app/config.py -> huddle/)
_BASE_DIR = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Backend configuration; every value is overridable via env vars."""

    model_config = SettingsConfigDict(
        env_prefix="HUDDLE_",
        env_file=str(_BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    public_url: str | None = None

    # Paths
    data_dir: Path = _BASE_DIR / "data"

    # Storage
    max_upload_bytes: int = 25 * 1024 * 1024
    storage_buckets: list[str] = ["chat-attachments"]

    # Logging
    log_level: str = "INFO"

    @property
    def db_path(self) -> Path:
        return self.data_dir / "huddle.db"

    @property
    def database_url(self) -> str:
        return f"sqlite+aiosqlite:///{self.db_path}"

    @property
    def storage_dir(self) -> Path:
        return self.data_dir / "storage"

    @property
    def base_url(self) -> str:
        """Base URL used when building public file URLs."""
        if self.public_url:
            return self.public_url.rstrip("/")
        host = "localhost" if self.host in ("0.0.0.0", "::") else self.host
        return f"http://{host}:{self.port}"


# Shared instance, import this rather than building a new one
settings = Settings()

DATA_DIR = settings.data_dir
DATABASE_URL = settings.database_url
