"""SQLite-backed diff store for subscribers, delivered listings and processed updates."""

from flatfinder.storage.database import DEFAULT_DB_PATH, create_schema, open_db
from flatfinder.storage.repository import NO_UPDATE_ID, DiffStore

__all__ = [
    "DEFAULT_DB_PATH",
    "open_db",
    "create_schema",
    "DiffStore",
    "NO_UPDATE_ID",
]
