"""Unit tests for message formatting and delivery.

Covers:
- :mod:`~flatfinder.notifiers.formatter` HTML layout and escaping.
- :class:`~flatfinder.notifiers.notifier.Notifier` live and dry-run delivery,
  per-listing failure isolation and the operator side channel.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, call

import pytest

from flatfinder.core.exceptions import TelegramError
from flatfinder.core.models import Listing, ListingSource, Subscriber
from flatfinder.core.run_context import RunContext
from flatfinder.notifiers.formatter import (
    format_crawl_error,
    format_crawl_truncated,
    format_listing,
    format_update_title,
)
from flatfinder.notifiers.notifier import Notifier
from flatfinder.notifiers.telegram import TelegramBot

# ---------------------------------------------------------------------------
# Factories / helpers
# ---------------------------------------------------------------------------


def _make_listing(id: str = "1", *, title: str = "Helle Wohnung", size: float = 64.5) -> Listing:
    return Listing(
        subscriber_id=100,
        id=id,
        source=ListingSource.IMMOSCOUT,
        size=size,
        rooms=2,
        price=980,
        title=title,
        url=f"https://www.immobilienscout24.de/expose/{id}",
        data={},
    )


def _mock_bot() -> MagicMock:
    bot = MagicMock(spec=TelegramBot)
    bot.send_message = AsyncMock(return_value={"message_id": 1})
    return bot


SUBSCRIBER = Subscriber(id=100, first_name="Ada", active=True, query="https://x.test/s")


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------


class TestFormatter:
    def test_listing_layout(self) -> None:
        assert format_listing(_make_listing("7")) == (
            '<a href="https://www.immobilienscout24.de/expose/7"><b>Helle Wohnung</b></a>\n'
            "Rooms: <code>2</code>\n"
            "Size: <code>64.5m²</code>\n"
            "Price: <code>980€</code>\n"
        )

    def test_whole_size_has_no_decimals(self) -> None:
        assert "Size: <code>70m²</code>" in format_listing(_make_listing(size=70.0))

    def test_title_is_escaped(self) -> None:
        text = format_listing(_make_listing(title="Loft <3 & Garten"))
        assert "<b>Loft &lt;3 &amp; Garten</b>" in text

    def test_update_title_pluralisation(self) -> None:
        assert format_update_title(1) == "<b>1 new listing</b>"
        assert format_update_title(4) == "<b>4 new listings</b>"

    def test_crawl_error_report(self) -> None:
        text = format_crawl_error(100, "https://x.test/?a=1&b=2", ValueError("bad <page>"))
        assert text.startswith("Boi, there is an error. Check the logs...")
        assert "<code>100</code>" in text
        assert "a=1&amp;b=2" in text
        assert "ValueError: bad &lt;page&gt;" in text

    def test_crawl_truncated_report(self) -> None:
        text = format_crawl_truncated(100, "https://x.test/?a=1&b=2", "https://x.test/?a=1&b=2&p=51")
        assert "page limit" in text
        assert "<code>100</code>" in text
        assert "a=1&amp;b=2&amp;p=51" in text


# ---------------------------------------------------------------------------
# Notifier
# ---------------------------------------------------------------------------


class TestNotifierLive:
    async def test_header_then_one_message_per_listing(self) -> None:
        bot = _mock_bot()
        notifier = Notifier(bot, RunContext(), min_interval_s=0)
        listings = [_make_listing("1"), _make_listing("2")]

        delivered = await notifier.send_listings(SUBSCRIBER, listings)

        assert delivered == listings
        assert bot.send_message.await_args_list == [
            call(100, "<b>2 new listings</b>"),
            call(100, format_listing(listings[0])),
            call(100, format_listing(listings[1])),
        ]

    async def test_failed_listing_excluded_batch_continues(self) -> None:
        bot = _mock_bot()
        bot.send_message.side_effect = [
            {"message_id": 1},
            TelegramError("Forbidden: bot was blocked", status_code=403),
            {"message_id": 3},
        ]
        notifier = Notifier(bot, RunContext(), min_interval_s=0)
        listings = [_make_listing("1"), _make_listing("2")]

        delivered = await notifier.send_listings(SUBSCRIBER, listings)

        assert [lst.id for lst in delivered] == ["2"]

    async def test_header_failure_propagates(self) -> None:
        bot = _mock_bot()
        bot.send_message.side_effect = TelegramError("down", status_code=502)
        notifier = Notifier(bot, RunContext(), min_interval_s=0)

        with pytest.raises(TelegramError):
            await notifier.send_listings(SUBSCRIBER, [_make_listing("1")])

        assert bot.send_message.await_count == 1

    async def test_empty_batch_sends_nothing(self) -> None:
        bot = _mock_bot()
        assert await Notifier(bot, RunContext()).send_listings(SUBSCRIBER, []) == []
        bot.send_message.assert_not_awaited()

    def test_negative_interval_rejected(self) -> None:
        with pytest.raises(ValueError):
            Notifier(_mock_bot(), RunContext(), min_interval_s=-1)


class TestNotifierDryRun:
    async def test_nothing_sent_everything_reported(self, caplog: pytest.LogCaptureFixture) -> None:
        bot = _mock_bot()
        notifier = Notifier(bot, RunContext(dry_run=True))
        listings = [_make_listing("1"), _make_listing("2")]

        delivered = await notifier.send_listings(SUBSCRIBER, listings)

        assert delivered == listings
        bot.send_message.assert_not_awaited()
        assert "[dry-run] Would send listing 1" in caplog.text


class TestOperatorChannel:
    async def test_sent_when_configured(self) -> None:
        bot = _mock_bot()
        notifier = Notifier(bot, RunContext(), admin_chat_id="-100200")

        assert await notifier.notify_operator("boom") is True
        bot.send_message.assert_awaited_once_with("-100200", "boom")

    async def test_dropped_without_admin_chat(self) -> None:
        bot = _mock_bot()
        notifier = Notifier(bot, RunContext(), admin_chat_id="")

        assert await notifier.notify_operator("boom") is False
        bot.send_message.assert_not_awaited()

    async def test_never_raises(self) -> None:
        bot = _mock_bot()
        bot.send_message.side_effect = TelegramError("down")
        notifier = Notifier(bot, RunContext(), admin_chat_id=1)

        assert await notifier.notify_operator("boom") is False

    async def test_operator_channel_live_in_dry_run(self) -> None:
        bot = _mock_bot()
        notifier = Notifier(bot, RunContext(dry_run=True), admin_chat_id=1)

        assert await notifier.notify_operator("boom") is True
