"""
ReelMatch — Application Configuration

Loads all configuration from environment variables (and an optional .env file)
using Pydantic Settings.  A cached ``get_settings()`` helper is provided so that
FastAPI dependency-injection (and any other call-site) always receives the same
validated instance without re-parsing the environment on every request.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the ReelMatch service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Database
    # ------------------------------------------------------------------ #
    DATABASE_URL: str
    SQLITE_BUSY_TIMEOUT_SECONDS: float = 30.0

    # ------------------------------------------------------------------ #
    # Redis – notification pub/sub (empty disables delivery)
    # ------------------------------------------------------------------ #
    REDIS_URL: str = ""
    NOTIFICATION_CHANNEL_PREFIX: str = "notifications"
    NOTIFICATION_TIMEOUT_SECONDS: float = 2.0

    # ------------------------------------------------------------------ #
    # Candidate ranking
    # ------------------------------------------------------------------ #
    CANDIDATE_DEFAULT_LIMIT: int = 20
    CANDIDATE_MAX_LIMIT: int = 100

    # ------------------------------------------------------------------ #
    # Movie metadata presentation
    # ------------------------------------------------------------------ #
    POSTER_IMAGE_BASE: str = "https://image.tmdb.org/t/p/"
    POSTER_SIZE: str = "w342"

    # ------------------------------------------------------------------ #
    # Identity projection
    # ------------------------------------------------------------------ #
    UNKNOWN_DISPLAY_NAME: str = "Unknown"

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # ------------------------------------------------------------------ #
    # CORS
    # ------------------------------------------------------------------ #
    ALLOWED_ORIGINS: str = "*"

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @property
    def allowed_origins_list(self) -> list[str]:
        """Return ALLOWED_ORIGINS as a list split on commas."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @field_validator("CANDIDATE_DEFAULT_LIMIT", "CANDIDATE_MAX_LIMIT")
    @classmethod
    def _limit_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Limit must be at least 1, got {v}")
        return v

    @field_validator(
        "NOTIFICATION_TIMEOUT_SECONDS",
        "REQUEST_TIMEOUT_SECONDS",
        "SQLITE_BUSY_TIMEOUT_SECONDS",
    )
    @classmethod
    def _timeout_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Timeout must be positive, got {v}")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached, validated ``Settings`` instance.

    Using ``@lru_cache`` guarantees the .env file is read and validated
    exactly once per process lifetime.  Import this function anywhere you
    need access to configuration::

        from reelmatch.config import get_settings
        settings = get_settings()
    """
    return Settings()  # type: ignore[call-arg]
