"""SQLite database initialisation for Flatfinder.

This module is responsible for:

* Opening (or creating) the SQLite file.
* Configuring PRAGMA settings (WAL journal mode, foreign keys).
* Bootstrapping the schema via ``CREATE TABLE IF NOT EXISTS``; safe to call
  on every startup.

Call :func:`open_db` once at process startup and share the returned
connection with :class:`~flatfinder.storage.repository.DiffStore`.  The
connection is closed by the caller.

Typical usage::

    from flatfinder.storage.database import open_db

    conn = await open_db(Path("data/flatfinder.db"))
    ...
    await conn.close()
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

__all__ = [
    "DEFAULT_DB_PATH",
    "open_db",
    "create_schema",
]

logger = logging.getLogger(__name__)

#: Fallback database path when no explicit path is passed to :func:`open_db`.
DEFAULT_DB_PATH: Path = Path("flatfinder.db")

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

#: One row per authenticated chat.  ``query`` is NULL until ``/search``.
#: ``seq`` keeps registration order independent of the chat id.
_DDL_SUBSCRIBERS = """\
CREATE TABLE IF NOT EXISTS subscribers (
    seq         INTEGER  PRIMARY KEY AUTOINCREMENT,
    chat_id     INTEGER  NOT NULL UNIQUE,
    first_name  TEXT     NOT NULL DEFAULT '',
    active      INTEGER  NOT NULL DEFAULT 0,
    query       TEXT,
    created_at  TEXT     NOT NULL
)"""

#: Listings already delivered, per subscriber.  Rows are never updated.
#:
#: data_json     Raw source payload as JSON text.  SQLite has no restriction
#:               on key characters, so dotted keys such as
#:               ``resultlist.realEstate`` are stored verbatim.
_DDL_LISTINGS = """\
CREATE TABLE IF NOT EXISTS listings (
    subscriber_id  INTEGER  NOT NULL,
    id             TEXT     NOT NULL,
    source         TEXT     NOT NULL,
    size           REAL     NOT NULL,
    rooms          INTEGER  NOT NULL,
    price          INTEGER  NOT NULL,
    title          TEXT     NOT NULL,
    url            TEXT     NOT NULL,
    data_json      TEXT     NOT NULL,
    date_added     TEXT     NOT NULL,
    PRIMARY KEY (subscriber_id, id)
)"""

_DDL_LISTINGS_SUBSCRIBER_INDEX = """\
CREATE INDEX IF NOT EXISTS idx_listings_subscriber ON listings (subscriber_id)"""

#: Idempotency markers for inbound Telegram updates.
_DDL_PROCESSED_UPDATES = """\
CREATE TABLE IF NOT EXISTS processed_updates (
    update_id     INTEGER  NOT NULL,
    processed_at  TEXT     NOT NULL,
    PRIMARY KEY (update_id)
)"""

_SCHEMA: tuple[str, ...] = (
    _DDL_SUBSCRIBERS,
    _DDL_LISTINGS,
    _DDL_LISTINGS_SUBSCRIBER_INDEX,
    _DDL_PROCESSED_UPDATES,
)

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def open_db(path: Path | None = None) -> aiosqlite.Connection:
    """Open (or create) the SQLite database and configure it.

    Creates parent directories, opens the connection with
    ``row_factory = aiosqlite.Row``, enables WAL mode and foreign keys, and
    bootstraps the schema.

    Args:
        path: Filesystem path for the SQLite file.  Defaults to
            :data:`DEFAULT_DB_PATH`.

    Returns:
        An open, configured :class:`aiosqlite.Connection`.  The caller is
        responsible for closing it.

    Raises:
        aiosqlite.OperationalError: If the database file cannot be opened.
    """
    db_path = Path(path or DEFAULT_DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    logger.debug("Opening SQLite database at %s", db_path)

    conn: aiosqlite.Connection = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row

    await _configure_pragmas(conn)
    await create_schema(conn)

    logger.info("SQLite database ready at %s", db_path)
    return conn


async def create_schema(conn: aiosqlite.Connection) -> None:
    """Create all tables and indices if they do not already exist.

    Args:
        conn: An open :class:`aiosqlite.Connection`.
    """
    for statement in _SCHEMA:
        await conn.execute(statement)
    await conn.commit()
    logger.debug("Schema bootstrap complete (%d statements)", len(_SCHEMA))


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


async def _configure_pragmas(conn: aiosqlite.Connection) -> None:
    """Enable WAL journal mode and foreign-key enforcement."""
    result = await conn.execute("PRAGMA journal_mode=WAL")
    row = await result.fetchone()
    mode = row[0] if row else "unknown"
    if mode != "wal":
        logger.warning(
            "Requested WAL journal mode but SQLite reported: %r. "
            "This happens for in-memory databases (':memory:').",
            mode,
        )

    await conn.execute("PRAGMA foreign_keys=ON")
