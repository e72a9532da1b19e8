"""Configuration settings behaviour tests."""

from __future__ import annotations

from datetime import date

import pytest

from mediamirror.config import Settings


def test_defaults_match_documented_values() -> None:
    """Settings should fall back to the documented sync defaults."""

    settings = Settings(_env_file=None)

    assert settings.database_url == "sqlite+aiosqlite:///./mediamirror.db"
    assert settings.item_page_size == 500
    assert settings.item_concurrency == 10
    assert settings.max_library_concurrency == 2
    assert settings.api_request_delay_ms == 100
    assert settings.recent_items_limit == 100
    assert settings.historical_start_date == date(2025, 4, 1)
    assert settings.historical_batch_size == 1_000
    assert settings.historical_activity_max_pages == 2_000


def test_environment_aliases_are_applied(monkeypatch) -> None:
    """Environment variables should populate settings through their aliases."""

    monkeypatch.setenv("ITEM_PAGE_SIZE", "250")
    monkeypatch.setenv("HISTORICAL_START_DATE", "2024-12-31")
    monkeypatch.setenv("PAGE_FETCH_TIMEOUT", "5")

    settings = Settings(_env_file=None)

    assert settings.item_page_size == 250
    assert settings.historical_start_date == date(2024, 12, 31)
    assert settings.page_fetch_timeout_seconds == 5.0


def test_log_level_is_case_insensitive() -> None:
    settings = Settings(_env_file=None, LOG_LEVEL="debug")

    assert settings.log_level == "DEBUG"


def test_sync_sqlite_url_is_rejected() -> None:
    """A bare sqlite URL would load a blocking driver and must be refused."""

    with pytest.raises(ValueError, match="async driver"):
        Settings(_env_file=None, DATABASE_URL="sqlite:///./mirror.db")


def test_item_concurrency_must_be_positive() -> None:
    with pytest.raises(ValueError):
        Settings(_env_file=None, ITEM_CONCURRENCY=0)
