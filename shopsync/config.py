"""Configuration settings for shopsync."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .urls import validate_backend_url
from .utils import get_shopsync_home


class Settings(BaseSettings):
    """Sync engine settings loaded from ``SHOPSYNC_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SHOPSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra env vars not in model
    )

    # Backend
    backend_url: Optional[str] = None
    request_timeout: float = 15.0  # seconds, per network call

    # Store limits
    history_limit: int = 100
    cart_dedup_window_ms: int = 30_000
    max_buffered_events: int = 1000

    # Persistence
    db_path: Optional[Path] = None  # defaults to <home>/shopsync.db
    store_name: str = "shopping-store"

    log_level: str = "INFO"

    @field_validator("backend_url")
    @classmethod
    def _check_backend_url(cls, value: Optional[str]) -> Optional[str]:
        return validate_backend_url(value)

    @field_validator("request_timeout")
    @classmethod
    def _check_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("request_timeout must be positive")
        return value

    @field_validator("history_limit", "max_buffered_events")
    @classmethod
    def _check_limits(cls, value: int) -> int:
        if value < 1:
            raise ValueError("limits must be at least 1")
        return value

    def resolved_db_path(self) -> Path:
        return self.db_path or (get_shopsync_home() / "shopsync.db")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
