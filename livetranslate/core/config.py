"""
Client configuration via pydantic-settings.

Loads values from the environment or a .env file with defaults that match
the backend's published policies. Use ``get_settings()`` to obtain the
cached singleton instance.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """LiveTranslate client settings loaded from environment / .env file.

    All settings can be overridden via environment variables or a `.env` file.
    Field names map directly to env var names (case-insensitive), e.g.
    ``BACKEND_URL=http://gpu-box:5000``.

    Attributes:
        backend_url: Base HTTP URL of the translation backend.
        reconnect_attempts: Connection attempts before giving up for good.
        chunk_duration_seconds: Audio window sent per streaming message.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Backend ---
    backend_url: str = "http://localhost:5000"
    ws_path: str = "/ws"  # Event channel path, appended to the ws:// form of backend_url
    request_timeout: float = 30.0  # Batch translate round-trip (seconds)
    connect_timeout: float = 5.0  # WebSocket opening handshake (seconds)

    # --- Reconnection ---
    reconnect_attempts: int = 5
    reconnect_delay: float = 1.0  # Fixed delay between attempts (seconds)

    # --- Health probe ---
    health_check_interval: float = 5.0
    health_check_timeout: float = 3.0

    # --- Audio capture ---
    sample_rate: int = 16000
    capture_frame_size: int = 4096  # Frames per capture callback
    chunk_duration_seconds: float = 2.0
    encode_window_bytes: int = 8192
    input_device: str | None = None  # sounddevice id or name; None = system default
    output_device: str | None = None

    # --- Session defaults ---
    source_lang: str = "en"
    target_lang: str = "es"
    translation_mode: str = "streaming"  # "streaming" or "batch"

    # --- Application ---
    log_level: str = "INFO"

    @property
    def ws_url(self) -> str:
        """WebSocket URL of the event channel derived from ``backend_url``."""
        base = self.backend_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://") :]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://") :]
        return base + "/" + self.ws_path.lstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings singleton.

    Uses ``functools.lru_cache`` so the .env file is read only once.
    Subsequent calls return the same ``Settings`` instance.

    Returns:
        Settings: The application-wide configuration object.
    """
    return Settings()
