"""High-level delivery entry point for Flatfinder.

Provides :class:`Notifier`, the single object the crawl pipeline calls to
deliver new listings to a subscriber.  It owns the decision of *whether* to
send (based on :class:`~flatfinder.core.run_context.RunContext`) and
delegates to:

* :mod:`flatfinder.notifiers.formatter` for message text.
* :class:`~flatfinder.notifiers.telegram.TelegramBot` for transport.

Bulk delivery
-------------
:meth:`Notifier.send_listings` sends a header message and then one message
per listing, sleeping :data:`_DEFAULT_MIN_INTERVAL` between sends so a
burst stays under Telegram's per-chat limit.  A failed listing does not
abort the batch; it is simply absent from the returned *delivered* list so
the caller never records it as seen.

Typical usage::

    notifier = Notifier(bot, ctx, admin_chat_id=settings.telegram_admin_chat_id)
    delivered = await notifier.send_listings(subscriber, new_listings)
    await store.record_listings(delivered)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Final

from flatfinder.core import events
from flatfinder.core.exceptions import TelegramError
from flatfinder.core.models import Listing, Subscriber
from flatfinder.core.run_context import RunContext
from flatfinder.notifiers.formatter import format_listing, format_update_title
from flatfinder.notifiers.telegram import TelegramBot

__all__ = ["Notifier"]

logger = logging.getLogger(__name__)

# Telegram allows roughly one message per second per chat in bursts and
# 30/s overall; 0.05 s keeps short bursts smooth.
_DEFAULT_MIN_INTERVAL: Final[float] = 0.05


class Notifier:
    """Formats and delivers listing messages for one subscriber at a time.

    * **dry-run mode** (``ctx.dry_run=True``): messages are formatted and
      logged at ``INFO`` instead of being sent.
    * **live mode**: messages are sent via Telegram.

    The operator side channel (:meth:`notify_operator`) is always live; it
    reports failures, not listings.

    Args:
        bot: Open :class:`TelegramBot`.  Its lifecycle belongs to the caller.
        ctx: Runtime operating mode flags.
        admin_chat_id: Operator chat for failure reports; empty disables them.
        min_interval_s: Minimum seconds between consecutive sends.
    """

    def __init__(
        self,
        bot: TelegramBot,
        ctx: RunContext,
        *,
        admin_chat_id: int | str | None = None,
        min_interval_s: float = _DEFAULT_MIN_INTERVAL,
    ) -> None:
        if min_interval_s < 0:
            raise ValueError(f"min_interval_s must be ≥ 0, got {min_interval_s!r}.")
        self._bot = bot
        self._ctx = ctx
        self._admin_chat_id = admin_chat_id or None
        self._min_interval_s = min_interval_s

    async def send_listing(self, listing: Listing) -> None:
        """Format and deliver one listing to its subscriber.

        Raises:
            TelegramError: The live send failed after all retries.
        """
        text = format_listing(listing)

        if not self._ctx.should_notify:
            logger.info(
                "[dry-run] Would send listing %s to %s\n%s",
                listing.id,
                listing.subscriber_id,
                text,
                extra={"event": events.LISTING_NOTIFIED},
            )
            return

        await self._bot.send_message(listing.subscriber_id, text)
        logger.info(
            "Listing %s sent to %s: %s",
            listing.id,
            listing.subscriber_id,
            listing.title[:60],
            extra={"event": events.LISTING_NOTIFIED},
        )

    async def send_listings(
        self, subscriber: Subscriber, listings: list[Listing]
    ) -> list[Listing]:
        """Send a header plus one message per listing.

        Args:
            subscriber: Recipient.
            listings: New listings in source order.  May be empty, in which
                case nothing is sent.

        Returns:
            The listings whose message was delivered (or logged in dry-run),
            in input order.

        Raises:
            TelegramError: The header could not be sent.  No listing message
                is attempted in that case.
        """
        if not listings:
            return []

        header = format_update_title(len(listings))
        if self._ctx.should_notify:
            await self._bot.send_message(subscriber.id, header)
        else:
            logger.info("[dry-run] Would send header to %s: %s", subscriber.id, header)

        delivered: list[Listing] = []
        for listing in listings:
            if self._min_interval_s > 0 and self._ctx.should_notify:
                await asyncio.sleep(self._min_interval_s)
            try:
                await self.send_listing(listing)
            except TelegramError as exc:
                logger.error(
                    "Failed to send listing %s to %s: %s",
                    listing.id,
                    subscriber.id,
                    exc,
                    extra={"event": events.LISTING_NOTIFY_ERROR},
                )
                continue
            delivered.append(listing)

        failed = len(listings) - len(delivered)
        if failed:
            logger.warning(
                "Delivery to %s finished: %d sent, %d failed.",
                subscriber.id,
                len(delivered),
                failed,
            )
        return delivered

    async def notify_operator(self, text: str) -> bool:
        """Best-effort message to the operator chat.

        Returns:
            ``True`` if the message was sent.  Never raises.
        """
        if self._admin_chat_id is None:
            logger.debug("No operator chat configured; report dropped.")
            return False
        try:
            await self._bot.send_message(self._admin_chat_id, text)
        except TelegramError as exc:
            logger.warning("Could not reach operator chat %s: %s", self._admin_chat_id, exc)
            return False
        return True
