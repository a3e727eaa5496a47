# turbo_upload/config.py
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MiB = 1024 * 1024
DEFAULT_PORT = 8080


def get_api_base_url(host: Optional[str] = None) -> str:
    """Resolve the storage service URL from a bare host or IP.

    Hosted `aaxion` tunnels are served over TLS on the default port; any
    other host is a LAN box listening on 8080.
    """
    if host and "aaxion" in host:
        return f"https://{host}"
    if host:
        return f"http://{host}:{DEFAULT_PORT}"
    return f"http://localhost:{DEFAULT_PORT}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TURBO_UPLOAD_", env_file=".env", extra="ignore")

    # Server
    API_HOST: Optional[str] = None
    API_BASE_URL: Optional[str] = None
    AUTH_TOKEN: Optional[str] = None

    # Chunking
    CHUNK_SIZE: int = 50 * MiB
    CHUNK_THRESHOLD: int = 100 * MiB
    UPLOAD_BLOCK_SIZE: int = 256 * 1024

    # Telemetry
    SPEED_SAMPLE_INTERVAL: float = 0.5

    # Retry and timeouts (seconds)
    MAX_ATTEMPTS: int = 3
    RETRY_BACKOFF_BASE: float = 1.0
    RETRY_BACKOFF_MAX: float = 30.0
    CONNECT_TIMEOUT: float = 30.0
    READ_TIMEOUT: float = 300.0

    LOG_LEVEL: str = "INFO"

    @field_validator("CHUNK_SIZE", "CHUNK_THRESHOLD", "UPLOAD_BLOCK_SIZE", "MAX_ATTEMPTS")
    @classmethod
    def must_be_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_level(cls, value: str) -> str:
        return value.upper()

    @property
    def base_url(self) -> str:
        if self.API_BASE_URL:
            return self.API_BASE_URL.rstrip("/")
        return get_api_base_url(self.API_HOST)
