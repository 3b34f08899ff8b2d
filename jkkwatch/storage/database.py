"""SQLite database initialisation for the watcher.

This module is responsible for:

* Opening (or creating) the SQLite file.
* Configuring low-level PRAGMA settings (WAL journal mode).
* Bootstrapping the schema via ``CREATE TABLE IF NOT EXISTS``, which is safe
  to run on every startup.

The watcher opens one connection at startup and shares it between the
:class:`~jkkwatch.storage.repository.LogStore` and the
:class:`~jkkwatch.storage.repository.StatusRepository`.  All access happens on
the event loop, so writes are naturally serialised.

Typical usage::

    from jkkwatch.storage.database import open_db

    async def main() -> None:
        conn = await open_db(settings.database_path)
        # ... hand conn to LogStore / StatusRepository ...
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
DEFAULT_DB_PATH: Path = Path("data") / "jkkwatch.db"

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

#: ``check_log`` holds every check and delivery outcome.
#:
#: Column notes
#: ------------
#: seq           Insertion order; newest-first listing sorts on it.
#: timestamp     ISO-8601 UTC timestamp with microseconds.  Fixed width, so
#:               lexical comparison matches chronological order.
#: found         Boolean (0/1).  Rows with found=1 survive age-based retention.
#: artifact_ref  Screenshot path for positive results; NULL otherwise.
_DDL_CHECK_LOG = """\
CREATE TABLE IF NOT EXISTS check_log (
    seq           INTEGER  PRIMARY KEY AUTOINCREMENT,
    timestamp     TEXT     NOT NULL,
    message       TEXT     NOT NULL,
    found         INTEGER  NOT NULL DEFAULT 0,
    artifact_ref  TEXT
)"""

_DDL_CHECK_LOG_RETENTION_INDEX = """\
CREATE INDEX IF NOT EXISTS ix_check_log_found_timestamp
    ON check_log (found, timestamp)"""

#: ``watch_status`` is a single-row table mirroring the in-memory WatchStatus.
_DDL_WATCH_STATUS = """\
CREATE TABLE IF NOT EXISTS watch_status (
    id               INTEGER  PRIMARY KEY CHECK (id = 1),
    running          INTEGER  NOT NULL DEFAULT 0,
    last_check_time  TEXT,
    last_result      TEXT,
    total_checks     INTEGER  NOT NULL DEFAULT 0,
    updated_at       TEXT     NOT NULL
)"""


async def open_db(path: Path | str | None = None) -> aiosqlite.Connection:
    """Open (or create) the SQLite database and bootstrap the schema.

    Args:
        path: Filesystem path for the SQLite file, or ``":memory:"``.
            Defaults to :data:`DEFAULT_DB_PATH`.

    Returns:
        An open, configured :class:`aiosqlite.Connection`.  The caller is
        responsible for closing it.

    Raises:
        aiosqlite.OperationalError: If the database file cannot be opened or
            created (e.g. permission denied on the parent directory).
    """
    target = str(path) if path is not None else str(DEFAULT_DB_PATH)
    if target != ":memory:":
        Path(target).parent.mkdir(parents=True, exist_ok=True)

    logger.debug("Opening SQLite database at %s", target)

    conn: aiosqlite.Connection = await aiosqlite.connect(target)
    conn.row_factory = aiosqlite.Row

    await _configure_pragmas(conn)
    await create_schema(conn)

    logger.info("SQLite database ready at %s", target)
    return conn


async def create_schema(conn: aiosqlite.Connection) -> None:
    """Create all required tables if they do not already exist.

    Idempotent and non-destructive.

    Args:
        conn: An open :class:`aiosqlite.Connection`.
    """
    await conn.execute(_DDL_CHECK_LOG)
    await conn.execute(_DDL_CHECK_LOG_RETENTION_INDEX)
    await conn.execute(_DDL_WATCH_STATUS)
    await conn.commit()
    logger.debug("Schema bootstrap complete (check_log, watch_status)")


async def _configure_pragmas(conn: aiosqlite.Connection) -> None:
    """Enable WAL so external readers never block the watcher's writes."""
    result = await conn.execute("PRAGMA journal_mode=WAL")
    row = await result.fetchone()
    mode = row[0] if row else "unknown"
    if mode != "wal":
        logger.debug("SQLite journal_mode is %r (expected for ':memory:')", mode)
    else:
        logger.debug("SQLite journal_mode set to WAL")
