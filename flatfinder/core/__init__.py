"""Core domain models, settings, logging configuration, and shared utilities."""

from flatfinder.core.exceptions import (
    ConfigError,
    FlatfinderError,
    NotificationError,
    OrchestratorError,
    SourceError,
    SourceFetchError,
    SourceSchemaError,
    TelegramError,
    TelegramRateLimitError,
)
from flatfinder.core.logging_config import JsonFormatter, configure_logging, traced
from flatfinder.core.models import Listing, ListingSource, Subscriber
from flatfinder.core.run_context import RunContext
from flatfinder.core.settings import Settings

__all__ = [
    # Logging
    "configure_logging",
    "traced",
    "JsonFormatter",
    # Domain models
    "Listing",
    "ListingSource",
    "Subscriber",
    # Settings / runtime
    "Settings",
    "RunContext",
    # Exceptions: base
    "FlatfinderError",
    # Exceptions: config
    "ConfigError",
    # Exceptions: source
    "SourceError",
    "SourceFetchError",
    "SourceSchemaError",
    # Exceptions: notification
    "NotificationError",
    "TelegramError",
    "TelegramRateLimitError",
    # Exceptions: orchestrator
    "OrchestratorError",
]
