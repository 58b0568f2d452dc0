"""Crawl scheduler: periodic and on-demand crawls.

Two ways to start a crawl:

* **Periodic**: :meth:`CrawlScheduler.run_forever` ticks immediately on
  start-up and then every ``crawl_interval`` seconds.  A tick crawls every
  active subscriber sequentially, in registration order.
* **On demand**: :meth:`CrawlScheduler.trigger` starts a fire-and-forget
  crawl for one subscriber, used after ``/search`` and ``/continue``.

Both paths go through :meth:`CrawlScheduler.crawl_subscriber`, which holds a
per-subscriber :class:`asyncio.Lock` for the whole crawl and re-reads the
subscriber inside it.  Two crawls of one subscriber therefore never overlap,
and a pause or query change issued while a crawl was queued is honoured.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import NoReturn

from flatfinder.core import events
from flatfinder.core.run_context import RunContext
from flatfinder.notifiers.notifier import Notifier
from flatfinder.orchestrator.pipeline import CrawlStats, TickStats, crawl_and_notify
from flatfinder.providers.base import BaseSource
from flatfinder.storage.repository import DiffStore

__all__ = ["CrawlScheduler"]

logger = logging.getLogger(__name__)


class CrawlScheduler:
    """Runs crawls for subscribers without ever overlapping one subscriber's crawls.

    Args:
        store: Diff store with subscribers and seen listings.
        source: Listing source shared by all crawls.
        notifier: Delivery front-end.
        ctx: Runtime operating mode.
        interval_s: Seconds between two ticks of :meth:`run_forever`.
    """

    def __init__(
        self,
        store: DiffStore,
        source: BaseSource,
        notifier: Notifier,
        ctx: RunContext,
        *,
        interval_s: float,
    ) -> None:
        if interval_s <= 0:
            raise ValueError(f"interval_s must be > 0, got {interval_s!r}.")
        self._store = store
        self._source = source
        self._notifier = notifier
        self._ctx = ctx
        self._interval_s = interval_s
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._tasks: set[asyncio.Task[CrawlStats | None]] = set()

    @property
    def pending(self) -> int:
        """Number of triggered crawls not yet finished."""
        return len(self._tasks)

    async def crawl_subscriber(self, subscriber_id: int) -> CrawlStats | None:
        """Crawl one subscriber under its lock.

        Returns:
            The crawl's stats, or ``None`` if the subscriber is unknown,
            paused or has no query by the time the lock is acquired.
        """
        async with self._locks[subscriber_id]:
            subscriber = await self._store.find_subscriber(subscriber_id)
            if subscriber is None or not subscriber.active or not subscriber.query:
                logger.info(
                    "Subscriber %s is not crawlable right now; skipping.",
                    subscriber_id,
                    extra={"event": events.CRAWL_SKIPPED},
                )
                return None
            return await crawl_and_notify(
                subscriber,
                source=self._source,
                store=self._store,
                notifier=self._notifier,
                ctx=self._ctx,
            )

    async def run_tick(self) -> TickStats:
        """Crawl every active subscriber once, sequentially.

        A failure for one subscriber is logged and does not stop the tick.
        """
        tick = TickStats()
        subscribers = await self._store.find_active_subscribers()
        logger.info(
            "Tick started: %d active subscriber(s).",
            len(subscribers),
            extra={"event": events.TICK_START},
        )

        for subscriber in subscribers:
            try:
                stats = await self.crawl_subscriber(subscriber.id)
            except Exception:
                logger.exception("Unhandled error while crawling subscriber %s.", subscriber.id)
                continue
            if stats is not None:
                tick.crawls.append(stats)

        logger.info(
            "Tick complete: %d crawl(s), %d fetched, %d new, %d notified, failed=%s",
            len(tick.crawls),
            tick.total_fetched,
            tick.total_new,
            tick.total_notified,
            tick.failed_subscribers or "none",
            extra={"event": events.TICK_COMPLETE},
        )
        return tick

    async def run_forever(self) -> NoReturn:
        """Tick now and then every ``interval_s`` seconds until cancelled."""
        logger.info("Crawl loop started; interval %.0f s.", self._interval_s)
        while True:
            try:
                await self.run_tick()
            except Exception:
                logger.exception("Tick failed; will retry after interval.")
            await asyncio.sleep(self._interval_s)

    def trigger(self, subscriber_id: int) -> asyncio.Task[CrawlStats | None]:
        """Start an out-of-band crawl for *subscriber_id* and return its task.

        The scheduler keeps a reference until the task finishes.
        """
        task = asyncio.create_task(
            self._run_triggered(subscriber_id), name=f"flatfinder-crawl-{subscriber_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("Triggered crawl for %s.", subscriber_id)
        return task

    async def _run_triggered(self, subscriber_id: int) -> CrawlStats | None:
        try:
            return await self.crawl_subscriber(subscriber_id)
        except Exception:
            logger.exception("Triggered crawl for %s failed.", subscriber_id)
            return None

    async def aclose(self) -> None:
        """Cancel and await all triggered crawls that are still running."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.debug("Cancelled %d pending crawl(s).", len(tasks))
