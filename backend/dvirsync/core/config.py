"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables and .env file.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    PROJECT_NAME: str = "dvirsync"
    ENVIRONMENT: str = "development"

    # MyGeotab session - supplied by the host, never negotiated here
    GEOTAB_SERVER: str = "my.geotab.com"
    GEOTAB_DATABASE: Optional[str] = None
    GEOTAB_USERNAME: Optional[str] = None
    GEOTAB_SESSION_ID: Optional[str] = None
    API_TIMEOUT_SECONDS: float = 30.0

    # Stub fetch
    CHUNK_DAYS: int = 7
    CHUNK_PAUSE_SECONDS: float = 0.1

    # Detail enrichment: 50 calls/batch with 1s pause is ~3000 calls/min,
    # under the 5000/min platform ceiling
    DETAIL_BATCH_SIZE: int = 50
    DETAIL_BATCH_DELAY_SECONDS: float = 1.0

    # Driver identity resolution
    DRIVER_BATCH_SIZE: int = 50
    DRIVER_BATCH_DELAY_SECONDS: float = 0.0

    # Rate limit backoff
    RATE_LIMIT_MAX_RETRIES: int = 2
    RATE_LIMIT_FLOOR_SECONDS: float = 5.0
    RATE_LIMIT_SAFETY_MARGIN_SECONDS: float = 0.5

    # Share of overall progress given to the stub phase
    STUB_PROGRESS_SHARE: float = 0.3

    # Foundation data (devices + groups)
    FOUNDATION_RESULTS_LIMIT: int = 5000

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    @field_validator("STUB_PROGRESS_SHARE")
    @classmethod
    def check_progress_share(cls, v: float) -> float:
        """Progress share must leave room for the enrichment phase."""
        if not 0.0 < v < 1.0:
            raise ValueError("STUB_PROGRESS_SHARE must be between 0 and 1 (exclusive)")
        return v

    @field_validator("CHUNK_DAYS", "DETAIL_BATCH_SIZE", "DRIVER_BATCH_SIZE")
    @classmethod
    def check_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("GEOTAB_SERVER", mode="before")
    @classmethod
    def strip_server_scheme(cls, v: str) -> str:
        """Accept both 'my.geotab.com' and 'https://my.geotab.com/'."""
        if isinstance(v, str):
            v = v.strip()
            for prefix in ("https://", "http://"):
                if v.startswith(prefix):
                    v = v[len(prefix):]
            return v.rstrip("/")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
