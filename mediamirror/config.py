"""Application configuration models."""

from __future__ import annotations

import logging
from datetime import date
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="mediamirror", alias="APP_NAME")
    log_level: LogLevel = Field(default="INFO", alias="LOG_LEVEL")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./mediamirror.db", alias="DATABASE_URL"
    )
    database_busy_timeout_seconds: float = Field(
        default=30.0, alias="DATABASE_BUSY_TIMEOUT", gt=0
    )

    request_timeout_seconds: float = Field(
        default=20.0, alias="REQUEST_TIMEOUT", gt=0
    )
    request_max_retries: int = Field(
        default=3, alias="REQUEST_MAX_RETRIES", ge=0, le=10
    )

    item_page_size: int = Field(default=500, alias="ITEM_PAGE_SIZE", ge=1, le=5_000)
    item_concurrency: int = Field(default=10, alias="ITEM_CONCURRENCY", ge=1, le=100)
    max_library_concurrency: int = Field(
        default=2, alias="MAX_LIBRARY_CONCURRENCY", ge=1, le=16
    )
    api_request_delay_ms: int = Field(
        default=100, alias="API_REQUEST_DELAY_MS", ge=0, le=60_000
    )
    recent_items_limit: int = Field(
        default=100, alias="RECENT_ITEMS_LIMIT", ge=1, le=1_000
    )
    page_fetch_timeout_seconds: float = Field(
        default=60.0, alias="PAGE_FETCH_TIMEOUT", gt=0
    )
    item_timeout_seconds: float = Field(default=30.0, alias="ITEM_TIMEOUT", gt=0)
    library_cache_ttl_seconds: int = Field(
        default=300, alias="LIBRARY_CACHE_TTL", ge=0
    )

    historical_start_date: date = Field(
        default=date(2025, 4, 1), alias="HISTORICAL_START_DATE"
    )
    historical_batch_size: int = Field(
        default=1_000, alias="HISTORICAL_BATCH_SIZE", ge=1, le=50_000
    )
    historical_activity_page_size: int = Field(
        default=100, alias="HISTORICAL_ACTIVITY_PAGE_SIZE", ge=1, le=1_000
    )
    historical_activity_max_pages: int = Field(
        default=2_000, alias="HISTORICAL_ACTIVITY_MAX_PAGES", ge=1
    )
    historical_activity_concurrency: int = Field(
        default=3, alias="HISTORICAL_ACTIVITY_CONCURRENCY", ge=1, le=16
    )
    historical_activity_delay_ms: int = Field(
        default=200, alias="HISTORICAL_ACTIVITY_DELAY_MS", ge=0, le=60_000
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value: object) -> object:
        """Accept log levels in any case."""

        if isinstance(value, str):
            return value.strip().upper() or "INFO"
        return value

    @field_validator("database_url")
    @classmethod
    def _require_async_driver(cls, value: str) -> str:
        """Reject bare SQLite URLs that would load a synchronous driver."""

        if value.startswith("sqlite://"):
            raise ValueError("DATABASE_URL must use an async driver such as sqlite+aiosqlite")
        return value

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


def configure_logging(settings: Settings) -> None:
    """Configure root logging for a process embedding the mirror."""

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]
