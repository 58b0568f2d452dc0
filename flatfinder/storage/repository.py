"""Diff store: subscribers, delivered listings and processed updates.

Provides :class:`DiffStore`, the single data-access object for the three
Flatfinder tables.  All persistent state lives here; the bot and the crawl
pipeline never cache any of it.

The store answers three questions:

* *Which of these listings has this subscriber already been told about?*
  (:meth:`DiffStore.known_listing_ids`, one query per batch).
* *Has this Telegram update already been handled?*
  (:meth:`DiffStore.update_exists`).
* *Who is subscribed, and to what?* (subscriber CRUD).

Writes that might collide (a listing or update recorded twice) use
``INSERT OR IGNORE`` on the primary key, so repeating them is a no-op.

Typical usage::

    conn = await open_db()
    store = DiffStore(conn)

    new = await store.keep_new_listings(chat_id, fetched)
    ...deliver new...
    await store.record_listings(delivered)
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime

import aiosqlite

from flatfinder.core.models import Listing, Subscriber

__all__ = ["DiffStore", "NO_UPDATE_ID"]

logger = logging.getLogger(__name__)

#: Returned by :meth:`DiffStore.max_update_id` on an empty store.  One less
#: than the lowest valid Telegram update id, so ``max + 1`` is always a valid
#: ``getUpdates`` offset.
NO_UPDATE_ID: int = -1

# SQLite's default SQLITE_MAX_VARIABLE_NUMBER is 999 on older builds.
_MAX_IN_PARAMS: int = 900


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _row_to_subscriber(row: aiosqlite.Row) -> Subscriber:
    return Subscriber(
        id=row["chat_id"],
        first_name=row["first_name"],
        active=bool(row["active"]),
        query=row["query"],
    )


class DiffStore:
    """Data-access object for ``subscribers``, ``listings`` and ``processed_updates``.

    Owns no connection lifecycle: the caller supplies an open
    :class:`aiosqlite.Connection` (see :func:`~flatfinder.storage.database.open_db`)
    and closes it.  ``aiosqlite`` runs every statement on one worker thread,
    so writes from concurrent coroutines are serialised.

    Args:
        conn: Open, configured :class:`aiosqlite.Connection`.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def known_listing_ids(self, subscriber_id: int, ids: Iterable[str]) -> set[str]:
        """Return the subset of *ids* already recorded for *subscriber_id*.

        One ``SELECT ... IN (...)`` per batch of up to 900 ids.

        Args:
            subscriber_id: Chat the listings belong to.
            ids: Source-local listing ids to check.

        Returns:
            The ids that are already known.  Empty when *ids* is empty.
        """
        wanted = list(dict.fromkeys(ids))
        known: set[str] = set()
        for start in range(0, len(wanted), _MAX_IN_PARAMS):
            chunk = wanted[start : start + _MAX_IN_PARAMS]
            placeholders = ",".join("?" * len(chunk))
            cursor = await self._conn.execute(
                f"SELECT id FROM listings WHERE subscriber_id = ? AND id IN ({placeholders})",
                (subscriber_id, *chunk),
            )
            known.update(row[0] for row in await cursor.fetchall())
        return known

    async def is_known(self, subscriber_id: int, listing_id: str) -> bool:
        """Return ``True`` if *listing_id* was already recorded for *subscriber_id*."""
        return bool(await self.known_listing_ids(subscriber_id, [listing_id]))

    async def keep_new_listings(
        self, subscriber_id: int, listings: Sequence[Listing]
    ) -> list[Listing]:
        """Filter *listings* down to those not yet known for *subscriber_id*.

        The input order is preserved.  Nothing is written.
        """
        if not listings:
            return []
        known = await self.known_listing_ids(subscriber_id, (lst.id for lst in listings))
        return [listing for listing in listings if listing.id not in known]

    async def record_listings(self, listings: Sequence[Listing]) -> int:
        """Persist delivered listings.

        Already-known ``(subscriber_id, id)`` pairs are ignored, so calling
        this twice with the same listings leaves the store unchanged.

        Args:
            listings: Listings whose notification was delivered.

        Returns:
            Number of rows actually inserted.
        """
        if not listings:
            return 0

        added = _now()
        rows = [
            (
                listing.subscriber_id,
                listing.id,
                str(listing.source),
                listing.size,
                listing.rooms,
                listing.price,
                listing.title,
                listing.url,
                json.dumps(listing.data, default=str),
                added,
            )
            for listing in listings
        ]
        before = self._conn.total_changes
        await self._conn.executemany(
            """
            INSERT OR IGNORE INTO listings
                (subscriber_id, id, source, size, rooms, price, title, url, data_json, date_added)
            VALUES
                (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
        )
        await self._conn.commit()
        inserted = self._conn.total_changes - before

        logger.debug(
            "record_listings: %d submitted, %d inserted, %d already known",
            len(rows),
            inserted,
            len(rows) - inserted,
        )
        return inserted

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    async def create_subscriber(self, chat_id: int, first_name: str) -> Subscriber:
        """Register a chat.  New subscribers start paused and without a query.

        If the chat is already registered the stored record is returned
        unchanged.
        """
        await self._conn.execute(
            """
            INSERT OR IGNORE INTO subscribers (chat_id, first_name, active, query, created_at)
            VALUES (?, ?, 0, NULL, ?)
            """,
            (chat_id, first_name, _now()),
        )
        await self._conn.commit()
        subscriber = await self.find_subscriber(chat_id)
        assert subscriber is not None, "subscriber vanished right after insert"
        logger.info("Subscriber %s registered (%s)", chat_id, subscriber.first_name)
        return subscriber

    async def find_subscriber(self, chat_id: int) -> Subscriber | None:
        """Return the subscriber for *chat_id*, or ``None`` if not registered."""
        cursor = await self._conn.execute(
            "SELECT chat_id, first_name, active, query FROM subscribers WHERE chat_id = ?",
            (chat_id,),
        )
        row = await cursor.fetchone()
        return _row_to_subscriber(row) if row is not None else None

    async def find_subscribers(self) -> list[Subscriber]:
        """Return every registered subscriber in registration order."""
        cursor = await self._conn.execute(
            "SELECT chat_id, first_name, active, query FROM subscribers ORDER BY seq"
        )
        return [_row_to_subscriber(row) for row in await cursor.fetchall()]

    async def find_active_subscribers(self) -> list[Subscriber]:
        """Return subscribers that are active and have a query, in registration order."""
        cursor = await self._conn.execute(
            """
            SELECT chat_id, first_name, active, query FROM subscribers
            WHERE active = 1 AND query IS NOT NULL
            ORDER BY seq
            """
        )
        return [_row_to_subscriber(row) for row in await cursor.fetchall()]

    async def is_authenticated(self, chat_id: int) -> bool:
        """A chat is authenticated once a subscriber record exists for it."""
        return await self.find_subscriber(chat_id) is not None

    async def set_query(self, chat_id: int, query: str) -> bool:
        """Replace the subscriber's search URL and mark it active.

        Returns:
            ``True`` if a subscriber row was updated.
        """
        cursor = await self._conn.execute(
            "UPDATE subscribers SET query = ?, active = 1 WHERE chat_id = ?",
            (query, chat_id),
        )
        await self._conn.commit()
        updated = cursor.rowcount > 0
        logger.debug("set_query chat=%s updated=%s", chat_id, updated)
        return updated

    async def set_active(self, chat_id: int, active: bool) -> bool:
        """Flip the subscriber's running flag.

        Returns:
            ``True`` if a subscriber row was updated.
        """
        cursor = await self._conn.execute(
            "UPDATE subscribers SET active = ? WHERE chat_id = ?",
            (int(active), chat_id),
        )
        await self._conn.commit()
        updated = cursor.rowcount > 0
        logger.debug("set_active chat=%s active=%s updated=%s", chat_id, active, updated)
        return updated

    # ------------------------------------------------------------------
    # Processed updates
    # ------------------------------------------------------------------

    async def update_exists(self, update_id: int) -> bool:
        """Return ``True`` if *update_id* was already processed."""
        cursor = await self._conn.execute(
            "SELECT 1 FROM processed_updates WHERE update_id = ? LIMIT 1",
            (update_id,),
        )
        return await cursor.fetchone() is not None

    async def insert_update(self, update_id: int) -> None:
        """Mark *update_id* as processed.  Repeating the call is a no-op."""
        await self._conn.execute(
            "INSERT OR IGNORE INTO processed_updates (update_id, processed_at) VALUES (?, ?)",
            (update_id, _now()),
        )
        await self._conn.commit()

    async def max_update_id(self) -> int:
        """Return the highest processed update id, or :data:`NO_UPDATE_ID`."""
        cursor = await self._conn.execute("SELECT MAX(update_id) FROM processed_updates")
        row = await cursor.fetchone()
        if row is None or row[0] is None:
            return NO_UPDATE_ID
        return int(row[0])
