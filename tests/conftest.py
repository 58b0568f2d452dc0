"""Shared pytest fixtures and configuration for the Flatfinder test suite.

This file is loaded automatically by pytest before any test module.
It provides project-wide fixtures used across unit and integration tests.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from pathlib import Path

import aiosqlite
import pytest
from pydantic_settings import SettingsConfigDict

from flatfinder.core import configure_logging
from flatfinder.core.settings import Settings
from flatfinder.storage.database import open_db
from flatfinder.storage.repository import DiffStore

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test.

    ``force=True`` applies the configuration even when pytest's own
    ``log_cli`` handler is already present.
    """
    configure_logging(level="DEBUG", fmt="text", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove Flatfinder-related env vars for the duration of a test.

    Also disables pydantic-settings `.env` file loading so that credentials
    present in a local `.env` file do not leak into Settings isolation tests.
    """
    sensitive_prefixes = (
        "TELEGRAM_",
        "BOT_",
        "UPDATE_",
        "POLL_",
        "WEBHOOK_",
        "CRAWL_",
        "SOURCE_",
        "DATABASE_",
        "DRY_RUN",
        "LOG_LEVEL",
        "LOG_FORMAT",
    )
    for key in list(os.environ):
        if any(key.startswith(prefix) for prefix in sensitive_prefixes):
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
async def conn(tmp_path: Path) -> AsyncIterator[aiosqlite.Connection]:
    """A fresh on-disk SQLite database with the full schema."""
    connection = await open_db(tmp_path / "flatfinder.db")
    try:
        yield connection
    finally:
        await connection.close()


@pytest.fixture()
async def store(conn: aiosqlite.Connection) -> DiffStore:
    return DiffStore(conn)


# ---------------------------------------------------------------------------
# Misc helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def logger() -> logging.Logger:
    """Return a ``logging.Logger`` scoped to the running test."""
    return logging.getLogger("tests")
