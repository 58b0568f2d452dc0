"""Update transports: how raw Telegram updates reach the ingester.

Both transports implement :meth:`UpdateTransport.run`, which loops until
cancelled and hands each raw envelope to the supplied coroutine:

* :class:`LongPollTransport` pulls with ``getUpdates``.
* :class:`WebhookTransport` registers a webhook and serves the FastAPI app
  from :mod:`flatfinder.bot.webapp` with uvicorn.

Which one runs is decided once at startup from ``UPDATE_MODE``.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import urlsplit

import uvicorn

from flatfinder.bot.webapp import create_app
from flatfinder.core import events
from flatfinder.core.exceptions import TelegramError
from flatfinder.notifiers.telegram import TelegramBot
from flatfinder.storage.repository import DiffStore

__all__ = ["UpdateTransport", "LongPollTransport", "WebhookTransport", "HandleUpdate"]

logger = logging.getLogger(__name__)

HandleUpdate = Callable[[dict[str, Any]], Awaitable[Any]]

#: Pause after a failed poll before the next attempt.
_DEFAULT_POLL_BACKOFF: float = 5.0


class UpdateTransport(ABC):
    """Source of raw update envelopes."""

    @abstractmethod
    async def run(self, handle: HandleUpdate) -> None:
        """Feed every received update to *handle* until cancelled."""


class LongPollTransport(UpdateTransport):
    """``getUpdates`` long polling.

    The offset is derived from the diff store on every iteration
    (``max_update_id() + 1``), so a restart resumes exactly after the last
    processed update and Telegram drops everything before it.

    Args:
        bot: Open Telegram client.
        store: Diff store holding processed-update markers.
        timeout: Long-poll timeout in seconds.
        backoff_s: Sleep after a failed iteration.
    """

    def __init__(
        self,
        bot: TelegramBot,
        store: DiffStore,
        *,
        timeout: int = 30,
        backoff_s: float = _DEFAULT_POLL_BACKOFF,
    ) -> None:
        self._bot = bot
        self._store = store
        self._timeout = timeout
        self._backoff_s = backoff_s

    async def run(self, handle: HandleUpdate) -> None:
        try:
            await self._bot.delete_webhook()
        except TelegramError as exc:
            logger.warning("deleteWebhook failed, polling anyway: %s", exc)

        logger.info("Long polling for updates (timeout=%ds).", self._timeout)
        while True:
            try:
                await self.poll_once(handle)
            except Exception as exc:
                logger.error(
                    "Polling updates failed: %s. Retrying in %.1f s.",
                    exc,
                    self._backoff_s,
                    exc_info=True,
                    extra={"event": events.POLL_ERROR},
                )
                await asyncio.sleep(self._backoff_s)

    async def poll_once(self, handle: HandleUpdate) -> int:
        """Fetch one batch of updates and process them in arrival order.

        Returns:
            Number of updates received.

        Raises:
            TelegramError: ``getUpdates`` failed.
        """
        offset = await self._store.max_update_id() + 1
        updates = await self._bot.get_updates(offset=offset, timeout=self._timeout)
        logger.debug("Received %d update(s) from offset %d.", len(updates), offset)
        for update in updates:
            await handle(update)
        return len(updates)


class WebhookTransport(UpdateTransport):
    """Push delivery via ``setWebhook`` and a local HTTP server.

    The server listens on *host*:*port* and serves the path component of
    *url*; a reverse proxy is expected to terminate TLS in front of it.

    Args:
        bot: Open Telegram client.
        url: Public HTTPS URL registered with Telegram.
        secret_token: Value Telegram echoes in the secret header.
        host: Bind address.
        port: Bind port.
    """

    def __init__(
        self,
        bot: TelegramBot,
        *,
        url: str,
        secret_token: str = "",
        host: str = "0.0.0.0",
        port: int = 8080,
    ) -> None:
        self._bot = bot
        self._url = url
        self._secret_token = secret_token
        self._host = host
        self._port = port

    @property
    def path(self) -> str:
        return urlsplit(self._url).path or "/"

    async def run(self, handle: HandleUpdate) -> None:
        await self._bot.set_webhook(self._url, secret_token=self._secret_token)
        logger.info(
            "Webhook registered at %s; serving %s on %s:%d",
            self._url,
            self.path,
            self._host,
            self._port,
        )

        app = create_app(handle, path=self.path, secret_token=self._secret_token)
        config = uvicorn.Config(
            app,
            host=self._host,
            port=self._port,
            log_config=None,
            access_log=False,
        )
        server = uvicorn.Server(config)
        try:
            await server.serve()
        finally:
            server.should_exit = True
