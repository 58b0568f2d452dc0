"""Telegram HTML message formatter.

Converts Flatfinder records into ready-to-send Telegram messages using
``parse_mode=HTML``.

Telegram HTML escaping rules
----------------------------
Only ``<``, ``>`` and ``&`` are special in HTML text; inside an attribute
value the quote character is too.  :func:`html.escape` with ``quote=True``
covers both cases.

Reference: https://core.telegram.org/bots/api#html-style

Typical usage::

    from flatfinder.notifiers.formatter import format_listing

    text = format_listing(listing)
    await bot.send_message(chat_id, text, parse_mode="HTML")
"""

from __future__ import annotations

import logging
from html import escape

from flatfinder.core.models import Listing

__all__ = [
    "format_listing",
    "format_update_title",
    "format_crawl_error",
    "format_crawl_truncated",
]

logger = logging.getLogger(__name__)


def _fmt_size(size: float) -> str:
    """``64.5`` → ``"64.5"``, ``70.0`` → ``"70"``."""
    return f"{size:.2f}".rstrip("0").rstrip(".")


def format_listing(listing: Listing) -> str:
    """Format *listing* as an HTML message.

    Layout::

        <a href="URL"><b>Title</b></a>
        Rooms: <code>2</code>
        Size: <code>64.5m²</code>
        Price: <code>980€</code>

    Args:
        listing: The listing to render.

    Returns:
        HTML text with every dynamic value escaped.
    """
    return (
        f'<a href="{escape(listing.url, quote=True)}"><b>{escape(listing.title)}</b></a>\n'
        f"Rooms: <code>{listing.rooms}</code>\n"
        f"Size: <code>{_fmt_size(listing.size)}m²</code>\n"
        f"Price: <code>{listing.price}€</code>\n"
    )


def format_update_title(count: int) -> str:
    """Header sent once per crawl before the individual listing messages."""
    noun = "listing" if count == 1 else "listings"
    return f"<b>{count} new {noun}</b>"


def format_crawl_error(subscriber_id: int, query: str | None, error: BaseException) -> str:
    """Operator report for a failed crawl."""
    return (
        "Boi, there is an error. Check the logs...\n"
        f"Subscriber: <code>{subscriber_id}</code>\n"
        f"Query: <code>{escape(query or '-')}</code>\n"
        f"Error: <code>{escape(f'{type(error).__name__}: {error}'[:500])}</code>"
    )


def format_crawl_truncated(subscriber_id: int, query: str, next_url: str) -> str:
    """Operator report for a crawl that stopped at the page limit."""
    return (
        "Pagination stopped at the page limit; later pages were not crawled.\n"
        f"Subscriber: <code>{subscriber_id}</code>\n"
        f"Query: <code>{escape(query)}</code>\n"
        f"First skipped page: <code>{escape(next_url)}</code>"
    )
