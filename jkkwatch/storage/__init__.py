"""SQLite-backed log store and status persistence."""

from jkkwatch.storage.database import DEFAULT_DB_PATH, create_schema, open_db
from jkkwatch.storage.repository import DEFAULT_RETENTION, LogStore, StatusRepository

__all__ = [
    "DEFAULT_DB_PATH",
    "DEFAULT_RETENTION",
    "open_db",
    "create_schema",
    "LogStore",
    "StatusRepository",
]
