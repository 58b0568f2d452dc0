"""Unit tests for the crawl scheduler.

Covers:
- :meth:`~flatfinder.orchestrator.scheduler.CrawlScheduler.run_tick` order
  and per-subscriber failure isolation.
- Re-reading the subscriber under its lock before crawling.
- On-demand crawls via
  :meth:`~flatfinder.orchestrator.scheduler.CrawlScheduler.trigger` and their
  cancellation on shutdown.
- :meth:`~flatfinder.orchestrator.scheduler.CrawlScheduler.run_forever`
  surviving a failed tick.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from flatfinder.core.exceptions import SourceFetchError
from flatfinder.core.models import Listing, ListingSource
from flatfinder.core.run_context import RunContext
from flatfinder.notifiers.notifier import Notifier
from flatfinder.notifiers.telegram import TelegramBot
from flatfinder.orchestrator.scheduler import CrawlScheduler
from flatfinder.providers.base import BaseSource, ResultPage
from flatfinder.storage.repository import DiffStore

QUERY = "https://www.immobilienscout24.de/Suche/de/berlin/berlin/wohnung-mieten?x=1"

# ---------------------------------------------------------------------------
# Factories / helpers
# ---------------------------------------------------------------------------


class RecordingSource(BaseSource):
    """Returns one listing per subscriber; fails for ids in ``failing``."""

    source = ListingSource.IMMOSCOUT

    def __init__(self, failing: set[int] | None = None) -> None:
        super().__init__(max_pages=1)
        self.failing = failing or set()
        self.crawled: list[int] = []
        self.gate: asyncio.Event | None = None

    async def fetch_page(self, subscriber_id: int, url: str) -> ResultPage:
        self.crawled.append(subscriber_id)
        if self.gate is not None:
            await self.gate.wait()
        if subscriber_id in self.failing:
            raise SourceFetchError("immoscout", "HTTP 500")
        listing = Listing(
            subscriber_id=subscriber_id,
            id=f"L{subscriber_id}",
            source=ListingSource.IMMOSCOUT,
            size=30,
            rooms=1,
            price=500,
            title="Zimmer",
            url=f"https://www.immobilienscout24.de/expose/L{subscriber_id}",
            data={},
        )
        return ResultPage(listings=[listing])


def _scheduler(store: DiffStore, source: BaseSource) -> CrawlScheduler:
    bot = MagicMock(spec=TelegramBot)
    bot.send_message = AsyncMock(return_value={"message_id": 1})
    notifier = Notifier(bot, RunContext(), min_interval_s=0)
    return CrawlScheduler(store, source, notifier, RunContext(), interval_s=60)


async def _add_running(store: DiffStore, *chat_ids: int) -> None:
    for chat_id in chat_ids:
        await store.create_subscriber(chat_id, f"user{chat_id}")
        await store.set_query(chat_id, QUERY)


# ---------------------------------------------------------------------------
# Ticks
# ---------------------------------------------------------------------------


class TestRunTick:
    async def test_crawls_active_subscribers_in_registration_order(
        self, store: DiffStore
    ) -> None:
        await _add_running(store, 30, 10, 20)
        await store.set_active(10, False)
        await store.create_subscriber(40, "no query")
        source = RecordingSource()

        tick = await _scheduler(store, source).run_tick()

        assert source.crawled == [30, 20]
        assert [c.subscriber_id for c in tick.crawls] == [30, 20]
        assert tick.total_notified == 2

    async def test_failure_for_one_subscriber_does_not_stop_tick(self, store: DiffStore) -> None:
        await _add_running(store, 1, 2, 3)
        source = RecordingSource(failing={2})

        tick = await _scheduler(store, source).run_tick()

        assert source.crawled == [1, 2, 3]
        assert tick.failed_subscribers == [2]
        assert await store.is_known(1, "L1")
        assert await store.is_known(3, "L3")

    async def test_empty_store(self, store: DiffStore) -> None:
        tick = await _scheduler(store, RecordingSource()).run_tick()
        assert tick.crawls == []

    def test_interval_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            CrawlScheduler(MagicMock(), RecordingSource(), MagicMock(), RunContext(), interval_s=0)


# ---------------------------------------------------------------------------
# Locking
# ---------------------------------------------------------------------------


class TestCrawlSubscriber:
    async def test_unknown_or_paused_subscriber_skipped(self, store: DiffStore) -> None:
        await _add_running(store, 1)
        await store.set_active(1, False)
        scheduler = _scheduler(store, RecordingSource())

        assert await scheduler.crawl_subscriber(1) is None
        assert await scheduler.crawl_subscriber(999) is None

    async def test_pause_while_waiting_for_lock_is_honoured(self, store: DiffStore) -> None:
        await _add_running(store, 1)
        source = RecordingSource()
        scheduler = _scheduler(store, source)

        async with scheduler._locks[1]:
            task = scheduler.trigger(1)
            await asyncio.sleep(0)
            await store.set_active(1, False)

        assert await task is None
        assert source.crawled == []

    async def test_crawls_of_one_subscriber_never_overlap(self, store: DiffStore) -> None:
        await _add_running(store, 1)
        source = RecordingSource()
        source.gate = asyncio.Event()
        scheduler = _scheduler(store, source)

        first = scheduler.trigger(1)
        second = scheduler.trigger(1)
        async with asyncio.timeout(5):
            while not source.crawled:
                await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)

        assert source.crawled == [1]
        source.gate.set()
        stats = await asyncio.gather(first, second)

        assert source.crawled == [1, 1]
        assert stats[0] is not None and stats[0].notified == 1
        assert stats[1] is not None and stats[1].new == 0


# ---------------------------------------------------------------------------
# Triggered crawls
# ---------------------------------------------------------------------------


class TestTrigger:
    async def test_trigger_runs_crawl_and_forgets_task(self, store: DiffStore) -> None:
        await _add_running(store, 1)
        scheduler = _scheduler(store, RecordingSource())

        task = scheduler.trigger(1)
        assert scheduler.pending == 1
        stats = await task
        await asyncio.sleep(0)

        assert stats is not None and stats.notified == 1
        assert scheduler.pending == 0

    async def test_aclose_cancels_pending_crawls(self, store: DiffStore) -> None:
        await _add_running(store, 1)
        source = RecordingSource()
        source.gate = asyncio.Event()
        scheduler = _scheduler(store, source)

        task = scheduler.trigger(1)
        await asyncio.sleep(0)
        await scheduler.aclose()

        assert task.cancelled()
        assert not await store.is_known(1, "L1")


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------


class TestRunForever:
    async def test_failed_tick_does_not_stop_loop(self, store: DiffStore) -> None:
        scheduler = CrawlScheduler(
            store, RecordingSource(), MagicMock(), RunContext(), interval_s=0.001
        )
        scheduler.run_tick = AsyncMock(  # type: ignore[method-assign]
            side_effect=[RuntimeError("db locked"), None, asyncio.CancelledError()]
        )

        with pytest.raises(asyncio.CancelledError):
            await scheduler.run_forever()

        assert scheduler.run_tick.await_count == 3
