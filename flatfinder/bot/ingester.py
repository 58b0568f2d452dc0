"""Per-update processing shared by both update transports.

:meth:`UpdateIngester.handle_update` takes one raw envelope, however it
arrived, and:

1. skips it if its ``update_id`` was already processed;
2. acknowledges (marks processed) updates it cannot handle;
3. builds an :class:`~flatfinder.bot.router.InboundContext` and dispatches
   it to the :class:`~flatfinder.bot.router.CommandRouter`;
4. marks the update processed, even when a handler failed.

Calls are serialised by a lock, so a redelivered update racing its first
delivery is still dispatched only once.
"""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from typing import Any

from pydantic import ValidationError

from flatfinder.bot.router import CommandRouter, build_context
from flatfinder.bot.updates import Update
from flatfinder.core import events
from flatfinder.core.logging_config import traced
from flatfinder.storage.repository import DiffStore

__all__ = ["UpdateIngester", "UpdateOutcome"]

logger = logging.getLogger(__name__)


class UpdateOutcome(StrEnum):
    DUPLICATE = "DUPLICATE"
    IGNORED = "IGNORED"
    DISPATCHED = "DISPATCHED"
    #: Not even an ``update_id`` could be read; nothing was recorded.
    DROPPED = "DROPPED"


def _read_update_id(raw: Any) -> int | None:
    if not isinstance(raw, dict):
        return None
    value = raw.get("update_id")
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


class UpdateIngester:
    """Deduplicates, parses and dispatches inbound updates.

    Args:
        store: Diff store holding the processed-update markers.
        router: Router with all handlers registered.
    """

    def __init__(self, store: DiffStore, router: CommandRouter) -> None:
        self._store = store
        self._router = router
        self._lock = asyncio.Lock()

    async def handle_update(self, raw: dict[str, Any]) -> UpdateOutcome:
        """Process one raw update envelope.  See the module docstring."""
        async with self._lock:
            update_id = _read_update_id(raw)
            with traced(f"update:{update_id if update_id is not None else '?'}"):
                return await self._handle_locked(raw, update_id)

    async def _handle_locked(self, raw: dict[str, Any], update_id: int | None) -> UpdateOutcome:
        if update_id is None:
            logger.warning("Dropping update without a readable update_id: %.200r", raw)
            return UpdateOutcome.DROPPED

        if await self._store.update_exists(update_id):
            logger.debug(
                "Update %d already processed; skipping.",
                update_id,
                extra={"event": events.UPDATE_DUPLICATE},
            )
            return UpdateOutcome.DUPLICATE

        try:
            update = Update.model_validate(raw)
        except ValidationError as exc:
            logger.warning(
                "Update %d is malformed (%d errors); acknowledging without dispatch.",
                update_id,
                exc.error_count(),
                extra={"event": events.UPDATE_IGNORED},
            )
            await self._store.insert_update(update_id)
            return UpdateOutcome.IGNORED

        context = build_context(update.message) if update.message is not None else None
        if context is None:
            logger.info(
                "Only private text messages are handled; ignoring update %d.",
                update_id,
                extra={"event": events.UPDATE_IGNORED},
            )
            await self._store.insert_update(update_id)
            return UpdateOutcome.IGNORED

        try:
            event = await self._router.dispatch(context)
        finally:
            await self._store.insert_update(update_id)

        logger.info(
            "Update %d dispatched as %s (%s) for chat %s",
            update_id,
            event,
            context.command_name or "message",
            context.chat_id,
            extra={"event": events.UPDATE_DISPATCHED},
        )
        return UpdateOutcome.DISPATCHED
