"""Unit tests for update ingestion.

Covers:
- :class:`~flatfinder.bot.ingester.UpdateIngester` deduplication by
  ``update_id``, acknowledgement of unhandled updates and marking an update
  processed even when a handler fails.
"""

from __future__ import annotations

import asyncio
from typing import Any

from flatfinder.bot.ingester import UpdateIngester, UpdateOutcome
from flatfinder.bot.router import CommandRouter, Event, InboundContext
from flatfinder.storage.repository import DiffStore

# ---------------------------------------------------------------------------
# Factories / helpers
# ---------------------------------------------------------------------------


def _update(
    update_id: int,
    text: str = "/start",
    *,
    chat_type: str = "private",
    command: bool = True,
) -> dict[str, Any]:
    message: dict[str, Any] = {
        "message_id": update_id * 10,
        "from": {"id": 100, "is_bot": False, "first_name": "Ada"},
        "chat": {"id": 100, "type": chat_type},
        "date": 1_700_000_000,
        "text": text,
    }
    if command:
        message["entities"] = [
            {"type": "bot_command", "offset": 0, "length": len(text.split(" ")[0])}
        ]
    return {"update_id": update_id, "message": message}


class _Recorder:
    def __init__(self) -> None:
        self.contexts: list[InboundContext] = []

    async def __call__(self, ctx: InboundContext) -> None:
        self.contexts.append(ctx)


def _ingester(store: DiffStore) -> tuple[UpdateIngester, _Recorder]:
    recorder = _Recorder()
    router = CommandRouter()
    for event in Event:
        router.on(event, recorder)
    return UpdateIngester(store, router), recorder


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestUpdateIngester:
    async def test_dispatches_and_marks_processed(self, store: DiffStore) -> None:
        ingester, recorder = _ingester(store)

        outcome = await ingester.handle_update(_update(1))

        assert outcome is UpdateOutcome.DISPATCHED
        assert [ctx.command_name for ctx in recorder.contexts] == ["/start"]
        assert await store.update_exists(1)

    async def test_redelivered_update_dispatched_once(self, store: DiffStore) -> None:
        ingester, recorder = _ingester(store)

        first = await ingester.handle_update(_update(1))
        second = await ingester.handle_update(_update(1))

        assert first is UpdateOutcome.DISPATCHED
        assert second is UpdateOutcome.DUPLICATE
        assert len(recorder.contexts) == 1

    async def test_concurrent_redelivery_dispatched_once(self, store: DiffStore) -> None:
        ingester, recorder = _ingester(store)

        outcomes = await asyncio.gather(
            ingester.handle_update(_update(3)), ingester.handle_update(_update(3))
        )

        assert sorted(outcomes) == [UpdateOutcome.DISPATCHED, UpdateOutcome.DUPLICATE]
        assert len(recorder.contexts) == 1

    async def test_group_message_acknowledged_not_dispatched(self, store: DiffStore) -> None:
        ingester, recorder = _ingester(store)

        outcome = await ingester.handle_update(_update(2, chat_type="group"))

        assert outcome is UpdateOutcome.IGNORED
        assert recorder.contexts == []
        assert await store.update_exists(2)

    async def test_update_without_message_ignored(self, store: DiffStore) -> None:
        ingester, recorder = _ingester(store)

        raw = {"update_id": 4, "edited_message": _update(4)["message"]}

        assert await ingester.handle_update(raw) is UpdateOutcome.IGNORED
        assert await store.update_exists(4)

    async def test_malformed_update_acknowledged(self, store: DiffStore) -> None:
        ingester, recorder = _ingester(store)

        raw = {"update_id": 5, "message": {"message_id": "not-a-number", "chat": "?"}}

        assert await ingester.handle_update(raw) is UpdateOutcome.IGNORED
        assert recorder.contexts == []
        assert await store.update_exists(5)

    async def test_missing_update_id_dropped(self, store: DiffStore) -> None:
        ingester, recorder = _ingester(store)

        assert await ingester.handle_update({"message": {}}) is UpdateOutcome.DROPPED
        assert await ingester.handle_update({"update_id": "7"}) is UpdateOutcome.DROPPED
        assert await store.max_update_id() == -1

    async def test_failing_handler_still_marks_processed(self, store: DiffStore) -> None:
        router = CommandRouter()

        async def boom(ctx: InboundContext) -> None:
            raise RuntimeError("handler exploded")

        router.on(Event.MESSAGE, boom)
        ingester = UpdateIngester(store, router)

        outcome = await ingester.handle_update(_update(6, "hello", command=False))

        assert outcome is UpdateOutcome.DISPATCHED
        assert await store.update_exists(6)
        assert await ingester.handle_update(_update(6, "hello", command=False)) is (
            UpdateOutcome.DUPLICATE
        )
