"""Crawl pipeline: fetch → diff → notify → record, for one subscriber.

Stages
------
1. **Fetch**: :meth:`~flatfinder.providers.base.BaseSource.fetch_all_pages`
   follows every page of the subscriber's search URL.  Hitting the page
   limit is reported to the operator chat.
2. **Diff**: one bulk lookup in the
   :class:`~flatfinder.storage.repository.DiffStore` keeps only listings the
   subscriber has not been told about yet.
3. **Notify**: :meth:`~flatfinder.notifiers.notifier.Notifier.send_listings`
   sends a header and one message per new listing.
4. **Record**: only listings whose message was delivered are persisted, so a
   failed send is retried by the next crawl.

:func:`crawl` covers stages 1 and 2 and writes nothing.
:func:`crawl_and_notify` runs all four and is the failure boundary: whatever
goes wrong is logged, reported to the operator chat and folded into the
returned :class:`CrawlStats`.  It never raises (cancellation excepted).

Typical usage::

    stats = await crawl_and_notify(
        subscriber, source=source, store=store, notifier=notifier, ctx=ctx
    )
    if stats.failed:
        ...
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from flatfinder.core import events
from flatfinder.core.logging_config import traced
from flatfinder.core.models import Listing, Subscriber
from flatfinder.core.run_context import RunContext
from flatfinder.notifiers.formatter import format_crawl_error, format_crawl_truncated
from flatfinder.notifiers.notifier import Notifier
from flatfinder.providers.base import BaseSource
from flatfinder.storage.repository import DiffStore

__all__ = [
    "CrawlStats",
    "TickStats",
    "crawl",
    "crawl_and_notify",
]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Stats data classes
# ---------------------------------------------------------------------------


@dataclass
class CrawlStats:
    """Counters for one subscriber's crawl.

    Attributes:
        subscriber_id: Chat the crawl ran for.
        fetched: Listings returned by the source across all pages.
        new: Listings not yet known for this subscriber.
        notified: Listings delivered (or logged in dry-run mode).
        errors: Failed listing sends plus one for a crawl-level failure.
        failed: ``True`` if the crawl aborted; nothing was recorded then.
        skipped: ``True`` if the subscriber had no query.
        truncated_at: First page left unfetched because of the page limit.
        duration_s: Wall-clock seconds spent.
    """

    subscriber_id: int
    fetched: int = 0
    new: int = 0
    notified: int = 0
    errors: int = 0
    failed: bool = False
    skipped: bool = False
    truncated_at: str | None = None
    duration_s: float = 0.0


@dataclass
class TickStats:
    """Aggregated statistics for one scheduled pass over all subscribers."""

    crawls: list[CrawlStats] = field(default_factory=list)

    @property
    def total_fetched(self) -> int:
        return sum(c.fetched for c in self.crawls)

    @property
    def total_new(self) -> int:
        return sum(c.new for c in self.crawls)

    @property
    def total_notified(self) -> int:
        return sum(c.notified for c in self.crawls)

    @property
    def failed_subscribers(self) -> list[int]:
        return [c.subscriber_id for c in self.crawls if c.failed]


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


async def crawl(
    source: BaseSource,
    store: DiffStore,
    subscriber_id: int,
    query: str,
    *,
    stats: CrawlStats | None = None,
) -> list[Listing]:
    """Fetch every page of *query* and return the listings new to *subscriber_id*.

    Nothing is persisted.

    Args:
        source: Source that understands *query*.
        store: Diff store to compare against.
        subscriber_id: Chat the crawl runs for.
        query: Search URL.
        stats: Optional counters to fill in (``fetched``, ``new``,
            ``truncated_at``).

    Returns:
        Unseen listings in source order.

    Raises:
        SourceError: The search could not be fetched or parsed.
        aiosqlite.Error: The diff lookup failed.
    """
    result = await source.fetch_all_pages(subscriber_id, query)
    fetched = result.listings
    new = await store.keep_new_listings(subscriber_id, fetched)

    if stats is not None:
        stats.fetched = len(fetched)
        stats.new = len(new)
        stats.truncated_at = result.next_url

    for listing in new:
        logger.debug(
            "New listing %s for %s: %s",
            listing.id,
            subscriber_id,
            listing.title[:60],
            extra={"event": events.LISTING_NEW},
        )
    logger.info(
        "Crawl for %s: %d fetched, %d new.",
        subscriber_id,
        len(fetched),
        len(new),
    )
    return new


async def crawl_and_notify(
    subscriber: Subscriber,
    *,
    source: BaseSource,
    store: DiffStore,
    notifier: Notifier,
    ctx: RunContext,
) -> CrawlStats:
    """Crawl *subscriber*'s query, deliver new listings and record delivered ones.

    In dry-run mode messages are only logged and nothing is recorded.

    Returns:
        Counters describing the crawl.  Failures are reflected in
        ``failed``/``errors`` rather than raised.
    """
    stats = CrawlStats(subscriber_id=subscriber.id)

    if not subscriber.query:
        stats.skipped = True
        logger.info(
            "Subscriber %s has no search query; skipping crawl.",
            subscriber.id,
            extra={"event": events.CRAWL_SKIPPED},
        )
        return stats

    started = time.monotonic()
    with traced(f"crawl:{subscriber.id}"):
        logger.info(
            "Crawl started for %s [%s].",
            subscriber.id,
            ctx.mode_label,
            extra={"event": events.CRAWL_START},
        )
        try:
            new = await crawl(source, store, subscriber.id, subscriber.query, stats=stats)
            delivered = await notifier.send_listings(subscriber, new)
            stats.notified = len(delivered)
            stats.errors += len(new) - len(delivered)
            if ctx.should_persist:
                await store.record_listings(delivered)
        except Exception as exc:
            stats.failed = True
            stats.errors += 1
            logger.error(
                "Crawl failed for subscriber %s (query %s): %s",
                subscriber.id,
                subscriber.query,
                exc,
                exc_info=True,
                extra={"event": events.CRAWL_ERROR},
            )
            await notifier.notify_operator(format_crawl_error(subscriber.id, subscriber.query, exc))
        else:
            logger.info(
                "Crawl complete for %s: fetched=%d new=%d notified=%d errors=%d",
                subscriber.id,
                stats.fetched,
                stats.new,
                stats.notified,
                stats.errors,
                extra={"event": events.CRAWL_COMPLETE},
            )
            if stats.truncated_at is not None:
                await notifier.notify_operator(
                    format_crawl_truncated(subscriber.id, subscriber.query, stats.truncated_at)
                )
        finally:
            stats.duration_s = time.monotonic() - started

    return stats
