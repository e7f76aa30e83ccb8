"""Client configuration with environment variable support.

All settings can be overridden via environment variables prefixed with ``HUDDLE_``,
or via a ``.env`` file in the project root.

Examples::

    HUDDLE_USER_ID=alice huddle watch
    HUDDLE_API_URL=http://10.0.0.5:8000 huddle history
    HUDDLE_FRESHNESS_WINDOW=10 huddle watch
"""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

_BASE_DIR = Path(__file__).resolve().parent.parent


class ClientSettings(BaseSettings):
    """Chat client configuration; every value is overridable via env vars."""

    model_config = SettingsConfigDict(
        env_prefix="HUDDLE_",
        env_file=str(_BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Backend endpoints
    api_url: str = "http://localhost:8000"
    ws_url: str = "ws://localhost:8000/ws"
    request_timeout: float = 10.0

    # Identity (authentication happens elsewhere; we only carry the id)
    user_id: str | None = None

    # Presence
    freshness_window: float = 6.0  # seconds a typing entry stays "active"
    typing_idle: float = 2.0  # inactivity before we clear our own typing flag
    typing_poll_interval: float = 2.0
    typist_display_cap: int = 3

    # Seen receipts
    seen_poll_interval: float = 3.0

    # Change feed
    reconnect_delay: float = 1.0

    # Storage
    attachments_bucket: str = "chat-attachments"

    # GIF search (Tenor v2)
    tenor_key: str | None = None
    tenor_client_key: str = "huddle"

    log_level: str = "INFO"


# Shared instance, import this rather than building a new one
client_settings = ClientSettings()
