"""Structured log event name constants.

Key transitions emit a log record with an ``event`` field passed via
``extra={"event": events.X}``.  In ``LOG_FORMAT=json`` mode it surfaces as
``extra.event``; in text mode the message text is self-describing.

Usage example::

    import logging
    from flatfinder.core import events

    logger = logging.getLogger(__name__)

    logger.info("Crawl started", extra={"event": events.CRAWL_START})
"""

from __future__ import annotations

__all__ = [
    # Scheduler
    "TICK_START",
    "TICK_COMPLETE",
    # Crawl lifecycle
    "CRAWL_START",
    "CRAWL_COMPLETE",
    "CRAWL_SKIPPED",
    "CRAWL_ERROR",
    # Listing stages
    "LISTING_NEW",
    "LISTING_NOTIFIED",
    "LISTING_NOTIFY_ERROR",
    # Update ingestion
    "UPDATE_DUPLICATE",
    "UPDATE_IGNORED",
    "UPDATE_DISPATCHED",
    "HANDLER_ERROR",
    "POLL_ERROR",
]

# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

#: A scheduled tick over all active subscribers started.
TICK_START: str = "TICK_START"

#: A scheduled tick finished (successfully or with per-subscriber failures).
TICK_COMPLETE: str = "TICK_COMPLETE"

# ---------------------------------------------------------------------------
# Crawl lifecycle
# ---------------------------------------------------------------------------

#: A crawl for one subscriber started.
CRAWL_START: str = "CRAWL_START"

#: A crawl for one subscriber finished without a fetch/parse failure.
CRAWL_COMPLETE: str = "CRAWL_COMPLETE"

#: Subscriber was inactive or had no query; nothing fetched.
CRAWL_SKIPPED: str = "CRAWL_SKIPPED"

#: Fetch or parse failure; the crawl was aborted and nothing persisted.
CRAWL_ERROR: str = "CRAWL_ERROR"

# ---------------------------------------------------------------------------
# Listing stages
# ---------------------------------------------------------------------------

#: Listing not yet known for this subscriber.
LISTING_NEW: str = "LISTING_NEW"

#: Listing message delivered (or logged in dry-run mode).
LISTING_NOTIFIED: str = "LISTING_NOTIFIED"

#: Listing message failed; the listing stays unknown and is retried next crawl.
LISTING_NOTIFY_ERROR: str = "LISTING_NOTIFY_ERROR"

# ---------------------------------------------------------------------------
# Update ingestion
# ---------------------------------------------------------------------------

#: Update id already processed; skipped.
UPDATE_DUPLICATE: str = "UPDATE_DUPLICATE"

#: Update of an unsupported shape; acknowledged without dispatch.
UPDATE_IGNORED: str = "UPDATE_IGNORED"

#: Update dispatched to the command router and marked processed.
UPDATE_DISPATCHED: str = "UPDATE_DISPATCHED"

#: A command handler raised; other handlers still ran.
HANDLER_ERROR: str = "HANDLER_ERROR"

#: A long-poll request failed; the loop continues.
POLL_ERROR: str = "POLL_ERROR"
