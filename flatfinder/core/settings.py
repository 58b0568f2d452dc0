"""Flatfinder application settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.

Every field maps 1-to-1 to an upper-case environment variable
(e.g. ``TELEGRAM_BOT_TOKEN`` → ``telegram_bot_token``).

Typical usage::

    from flatfinder.core.settings import Settings

    settings = Settings()                  # loads from env + .env
    settings.require_runtime_config()      # raises ConfigError if unusable
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from flatfinder.core.exceptions import ConfigError

__all__ = ["Settings", "UpdateMode"]

logger = logging.getLogger(__name__)

#: How inbound Telegram updates reach the process.
UpdateMode = Literal["poll", "webhook"]


class Settings(BaseSettings):
    """Central application configuration.

    Values are loaded in priority order:

    1. Actual environment variables (highest priority).
    2. ``.env`` file in the working directory.
    3. Field defaults (lowest priority).

    ``telegram_bot_token`` and ``bot_password`` default to empty strings so
    that the object can be built in tests; :meth:`require_runtime_config`
    enforces them before the service starts.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Telegram
    # ------------------------------------------------------------------
    telegram_bot_token: str = Field(
        default="",
        description="Bot token from @BotFather (required).",
    )
    telegram_admin_chat_id: str = Field(
        default="",
        description="Operator chat that receives crawl failure reports.",
    )
    telegram_send_delay: float = Field(
        default=0.05,
        ge=0.0,
        description="Seconds between consecutive listing messages.",
    )
    bot_password: str = Field(
        default="",
        description="Password users must send via /auth (required).",
    )

    # ------------------------------------------------------------------
    # Update ingestion
    # ------------------------------------------------------------------
    update_mode: UpdateMode = Field(
        default="poll",
        description="'poll' for getUpdates long polling, 'webhook' for push.",
    )
    poll_timeout: int = Field(
        default=30,
        ge=0,
        description="Long-poll timeout passed to getUpdates, in seconds.",
    )
    webhook_url: str = Field(
        default="",
        description="Public HTTPS URL Telegram should POST updates to.",
    )
    webhook_secret: str = Field(
        default="",
        description="Secret echoed by Telegram in X-Telegram-Bot-Api-Secret-Token.",
    )
    webhook_host: str = Field(default="0.0.0.0", description="Bind address.")
    webhook_port: int = Field(default=8080, ge=1, le=65535, description="Bind port.")

    # ------------------------------------------------------------------
    # Crawling
    # ------------------------------------------------------------------
    crawl_interval: int = Field(
        default=900,
        ge=1,
        description="Seconds between two scheduled crawls of all subscribers.",
    )
    source_max_pages: int = Field(
        default=50,
        ge=1,
        description="Upper bound on result pages followed per crawl.",
    )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    database_path: str = Field(
        default="data/flatfinder.db",
        description="Path to the SQLite database file.",
    )

    # ------------------------------------------------------------------
    # Runtime flags
    # ------------------------------------------------------------------
    dry_run: bool = Field(
        default=False,
        description="Log listing messages instead of sending them.",
    )
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("update_mode", mode="before")
    @classmethod
    def _lower_update_mode(cls, v: object) -> object:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v!r}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        allowed = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v_lower

    # ------------------------------------------------------------------
    # Model validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def _validate_webhook(self) -> Settings:
        """Webhook mode is useless without a public URL."""
        if self.update_mode == "webhook" and not self.webhook_url:
            raise ValueError("update_mode 'webhook' requires webhook_url to be set")
        if self.webhook_url and not self.webhook_url.startswith("https://"):
            raise ValueError(f"webhook_url must be an https URL, got {self.webhook_url!r}")
        return self

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    def require_runtime_config(self) -> None:
        """Raise :exc:`ConfigError` if the service cannot start with these values."""
        missing = [
            name
            for name, value in (
                ("TELEGRAM_BOT_TOKEN", self.telegram_bot_token),
                ("BOT_PASSWORD", self.bot_password),
            )
            if not value
        ]
        if missing:
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

    @property
    def database_path_resolved(self) -> Path:
        """Return the database path as a resolved :class:`~pathlib.Path`."""
        return Path(self.database_path).resolve()

    @property
    def admin_configured(self) -> bool:
        """``True`` if crawl failures can be reported to an operator chat."""
        return bool(self.telegram_admin_chat_id)
