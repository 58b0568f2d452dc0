"""Flatfinder exception taxonomy.

Every custom exception inherits from :class:`FlatfinderError`.  Exceptions are
organised by architectural layer so callers can catch at the right granularity:

    Layer hierarchy
    ---------------
    FlatfinderError
    ├── ConfigError
    ├── SourceError
    │   ├── SourceFetchError
    │   └── SourceSchemaError
    ├── NotificationError
    │   └── TelegramError
    │       └── TelegramRateLimitError
    └── OrchestratorError

Usage:

    from flatfinder.core.exceptions import SourceFetchError

    raise SourceFetchError("immoscout", "Connection refused") from exc
"""

from __future__ import annotations

import logging

__all__ = [
    "FlatfinderError",
    # Config
    "ConfigError",
    # Source
    "SourceError",
    "SourceFetchError",
    "SourceSchemaError",
    # Notification
    "NotificationError",
    "TelegramError",
    "TelegramRateLimitError",
    # Orchestrator
    "OrchestratorError",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class FlatfinderError(Exception):
    """Root exception for all Flatfinder errors.

    Catch this to handle any application-level error uniformly.  Prefer
    catching layer-specific subclasses wherever possible.
    """


# ---------------------------------------------------------------------------
# Config layer
# ---------------------------------------------------------------------------


class ConfigError(FlatfinderError):
    """Raised when the application configuration is invalid or incomplete.

    Examples:
        - ``TELEGRAM_BOT_TOKEN`` or ``BOT_PASSWORD`` is missing.
    """


# ---------------------------------------------------------------------------
# Source layer
# ---------------------------------------------------------------------------


class SourceError(FlatfinderError):
    """Base class for all listing-source errors.

    Args:
        source: Short name of the source (e.g. ``"immoscout"``).
        message: Human-readable error description.
    """

    def __init__(self, source: str, message: str) -> None:
        self.source = source
        super().__init__(f"[{source}] {message}")


class SourceFetchError(SourceError):
    """Raised when a page cannot be fetched from the remote source.

    Covers network errors, non-2xx status codes, timeouts and bodies that are
    not JSON at all.
    """


class SourceSchemaError(SourceError):
    """Raised when a fetched page does not have the expected shape.

    Covers missing wrapper keys, missing required listing fields, listing
    fields that fail validation, unsupported multi-entry result lists and
    pagination links that loop back on themselves.  Always fatal for the
    crawl that hit it.
    """


# ---------------------------------------------------------------------------
# Notification layer
# ---------------------------------------------------------------------------


class NotificationError(FlatfinderError):
    """Base class for notification delivery errors."""


class TelegramError(NotificationError):
    """Raised when the Telegram Bot API returns an error or is unreachable.

    Args:
        message: Human-readable error description.
        status_code: HTTP status code from the Telegram API, if available.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"Telegram error{detail}: {message}")


class TelegramRateLimitError(TelegramError):
    """Raised when the Telegram Bot API returns HTTP 429 (Too Many Requests).

    Args:
        retry_after: Seconds to wait before retrying, as reported by Telegram.
    """

    def __init__(self, retry_after: float) -> None:
        self.retry_after = retry_after
        super().__init__(
            f"Rate limited, retry after {retry_after}s",
            status_code=429,
        )


# ---------------------------------------------------------------------------
# Orchestrator layer
# ---------------------------------------------------------------------------


class OrchestratorError(FlatfinderError):
    """Raised for errors originating in the scheduling or service layer.

    Examples:
        - The update transport stopped unexpectedly.
        - A driver task exited although it should loop forever.
    """
