"""Shared pytest fixtures and configuration for the Homex test suite.

This file is loaded automatically by pytest before any test module.
It provides project-wide fixtures used across unit and integration tests.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite
import pytest
from pydantic_settings import SettingsConfigDict

from homex.core import configure_logging
from homex.core.settings import Settings
from homex.storage.database import open_db
from homex.storage.repository import ListingStore

#: Fixed "now" used by clock-driven tests.
NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Settable clock; call it to read the current time."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test."""
    configure_logging(level="DEBUG", fmt="text", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove Homex-related env vars and disable ``.env`` loading for a test.

    Keeps settings tests independent of the developer's shell and of any
    local ``.env`` file with real credentials.
    """
    sensitive_prefixes = (
        "HOMEX_",
        "SENDGRID_",
        "EMAIL_",
        "DATABASE_",
        "ALLOWED_ORIGINS",
        "LISTING_",
        "NOTICE_",
        "EXPIRY_",
        "NOTIFY_",
        "SCHEDULER_",
        "RUN_STARTUP",
        "DRY_RUN",
        "LOG_LEVEL",
        "LOG_FORMAT",
        "HOST",
        "PORT",
        "ENVIRONMENT",
    )
    for key in list(os.environ):
        if any(key.upper().startswith(prefix) for prefix in sensitive_prefixes):
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "homex.db"


@pytest.fixture()
async def conn(db_path: Path) -> AsyncIterator[aiosqlite.Connection]:
    """Open a fresh on-disk SQLite database with the Homex schema."""
    connection = await open_db(db_path)
    try:
        yield connection
    finally:
        await connection.close()


@pytest.fixture()
def store(conn: aiosqlite.Connection) -> ListingStore:
    return ListingStore(conn)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Misc helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def logger() -> logging.Logger:
    return logging.getLogger("tests")
