"""Live integration tests for the Telegram Bot API client.

Sends real messages to the operator chat.  Marked
``@pytest.mark.integration`` and excluded from the default run.

Run on demand::

    pytest -m integration tests/integration/test_telegram_live.py

Skipped unless both ``TELEGRAM_BOT_TOKEN`` and ``TELEGRAM_ADMIN_CHAT_ID``
are set in the environment or the local ``.env`` file.
"""

from __future__ import annotations

import os

import pytest
from dotenv import load_dotenv

from flatfinder.core.exceptions import TelegramError
from flatfinder.core.models import Listing, ListingSource
from flatfinder.notifiers.formatter import format_listing, format_update_title
from flatfinder.notifiers.telegram import TelegramBot

load_dotenv()

_TOKEN: str = os.environ.get("TELEGRAM_BOT_TOKEN", "")
_CHAT_ID: str = os.environ.get("TELEGRAM_ADMIN_CHAT_ID", "")

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not (_TOKEN and _CHAT_ID),
        reason="TELEGRAM_BOT_TOKEN / TELEGRAM_ADMIN_CHAT_ID not set; skipping live Telegram tests.",
    ),
]


class TestTelegramLive:
    async def test_formatted_listing_is_accepted(self) -> None:
        """Telegram's HTML parser must accept the exact markup we produce."""
        listing = Listing(
            subscriber_id=int(_CHAT_ID) if _CHAT_ID.lstrip("-").isdigit() else 0,
            id="0",
            source=ListingSource.IMMOSCOUT,
            size=64.5,
            rooms=2,
            price=980,
            title="[flatfinder test] Altbau <Balkon> & Garten",
            url="https://www.immobilienscout24.de/expose/0",
            data={},
        )
        async with TelegramBot(_TOKEN) as bot:
            await bot.send_message(_CHAT_ID, format_update_title(1))
            sent = await bot.send_message(_CHAT_ID, format_listing(listing))

        assert sent["chat"]["id"] == int(_CHAT_ID)

    async def test_unknown_chat_raises(self) -> None:
        async with TelegramBot(_TOKEN) as bot:
            with pytest.raises(TelegramError) as exc_info:
                await bot.send_message(1, "nobody home")

        assert exc_info.value.status_code in {400, 403}

    async def test_get_updates_returns_list(self) -> None:
        async with TelegramBot(_TOKEN) as bot:
            updates = await bot.get_updates(offset=-1, timeout=0)

        assert isinstance(updates, list)
