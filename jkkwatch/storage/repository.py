"""Log store and status persistence for the watcher.

Provides the two data-access objects that share the SQLite connection opened
by :func:`~jkkwatch.storage.database.open_db`:

* :class:`LogStore`: append-only record of check outcomes with lazy,
  append-time retention.
* :class:`StatusRepository`: the single persisted
  :class:`~jkkwatch.core.models.WatchStatus` row.

Both convert :class:`aiosqlite.Error` into
:class:`~jkkwatch.core.exceptions.StorageError`.  Objects sharing one
connection must share one ``write_lock``: a commit or rollback issued by one
writer would otherwise land between the statements of another's transaction.

Retention
---------
Every :meth:`LogStore.append` deletes entries older than the retention window
(24 h by default) unless they are marked ``found``.  Compaction only runs on
append, so a long-idle store may list stale not-found entries until the next
check writes one.

Typical usage::

    conn = await open_db(settings.database_path)
    store = LogStore(conn)
    await store.append(LogEntry(message="Searching (no hits)...", found=False))
    latest = await store.list(limit=20)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import aiosqlite

from jkkwatch.core.exceptions import StorageError
from jkkwatch.core.models import LogEntry, WatchStatus, utc_now

__all__ = [
    "DEFAULT_RETENTION",
    "LogStore",
    "StatusRepository",
]

logger = logging.getLogger(__name__)

#: Age after which not-found entries are discarded.
DEFAULT_RETENTION: timedelta = timedelta(hours=24)

#: Number of entries returned by :meth:`LogStore.list` when no limit is given.
DEFAULT_LIST_LIMIT: int = 20


def _to_db_ts(value: datetime) -> str:
    """Serialise *value* to a fixed-width UTC ISO-8601 string."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _from_db_ts(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


# ---------------------------------------------------------------------------
# Log store
# ---------------------------------------------------------------------------


class LogStore:
    """Data-access object for the ``check_log`` table.

    Args:
        conn: Open :class:`aiosqlite.Connection` with the schema applied.
        retention: Age beyond which not-found entries are deleted on append.
        clock: Returns the current UTC time; injectable for tests.
        write_lock: Serialises write transactions on *conn*.
    """

    def __init__(
        self,
        conn: aiosqlite.Connection,
        *,
        retention: timedelta = DEFAULT_RETENTION,
        clock: Callable[[], datetime] = utc_now,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        if retention <= timedelta(0):
            raise ValueError(f"retention must be positive, got {retention!r}.")
        self._conn = conn
        self._retention = retention
        self._clock = clock
        self._write_lock = write_lock if write_lock is not None else asyncio.Lock()

    async def append(self, entry: LogEntry) -> None:
        """Persist *entry*, then discard expired not-found entries.

        Raises:
            StorageError: If the insert or the compaction fails.  Neither is
                committed in that case.
        """
        cutoff = _to_db_ts(self._clock() - self._retention)
        async with self._write_lock:
            try:
                await self._conn.execute(
                    """
                    INSERT INTO check_log (timestamp, message, found, artifact_ref)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        _to_db_ts(entry.timestamp),
                        entry.message,
                        int(entry.found),
                        entry.artifact_ref,
                    ),
                )
                cursor = await self._conn.execute(
                    "DELETE FROM check_log WHERE found = 0 AND timestamp < ?",
                    (cutoff,),
                )
                await self._conn.commit()
            except aiosqlite.Error as exc:
                await self._rollback_quietly()
                raise StorageError(f"Failed to append log entry: {exc}") from exc

        if cursor.rowcount:
            logger.debug("Retention removed %d expired log entr(y/ies)", cursor.rowcount)

    async def list(self, limit: int = DEFAULT_LIST_LIMIT) -> list[LogEntry]:  # noqa: A003
        """Return up to *limit* entries, newest first.

        A non-positive *limit* returns an empty list.

        Raises:
            StorageError: If the query fails.
        """
        if limit <= 0:
            return []
        try:
            cursor = await self._conn.execute(
                """
                SELECT timestamp, message, found, artifact_ref
                FROM check_log
                ORDER BY seq DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to read log entries: {exc}") from exc

        return [
            LogEntry(
                timestamp=datetime.fromisoformat(row["timestamp"]),
                message=row["message"],
                found=bool(row["found"]),
                artifact_ref=row["artifact_ref"],
            )
            for row in rows
        ]

    async def clear(self) -> None:
        """Delete every entry, including found ones.

        Raises:
            StorageError: If the delete fails.
        """
        async with self._write_lock:
            try:
                await self._conn.execute("DELETE FROM check_log")
                await self._conn.commit()
            except aiosqlite.Error as exc:
                await self._rollback_quietly()
                raise StorageError(f"Failed to clear log entries: {exc}") from exc
        logger.info("Log history cleared")

    async def count(self) -> int:
        """Return the number of stored entries."""
        try:
            cursor = await self._conn.execute("SELECT COUNT(*) FROM check_log")
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to count log entries: {exc}") from exc
        return int(row[0]) if row else 0

    async def _rollback_quietly(self) -> None:
        try:
            await self._conn.rollback()
        except aiosqlite.Error:
            logger.debug("Rollback after storage failure also failed", exc_info=True)


# ---------------------------------------------------------------------------
# Status record
# ---------------------------------------------------------------------------


class StatusRepository:
    """Data-access object for the single-row ``watch_status`` table.

    Args:
        conn: Open :class:`aiosqlite.Connection` with the schema applied.
        write_lock: Serialises write transactions on *conn*; pass the lock
            given to the :class:`LogStore` on the same connection.
    """

    def __init__(
        self, conn: aiosqlite.Connection, *, write_lock: asyncio.Lock | None = None
    ) -> None:
        self._conn = conn
        self._write_lock = write_lock if write_lock is not None else asyncio.Lock()

    async def save(self, status: WatchStatus) -> None:
        """Upsert *status* as the persisted record.

        Raises:
            StorageError: If the write fails.
        """
        last_check = (
            _to_db_ts(status.last_check_time) if status.last_check_time is not None else None
        )
        async with self._write_lock:
            try:
                await self._conn.execute(
                    """
                    INSERT INTO watch_status
                        (id, running, last_check_time, last_result, total_checks, updated_at)
                    VALUES (1, ?, ?, ?, ?, ?)
                    ON CONFLICT (id) DO UPDATE SET
                        running         = excluded.running,
                        last_check_time = excluded.last_check_time,
                        last_result     = excluded.last_result,
                        total_checks    = excluded.total_checks,
                        updated_at      = excluded.updated_at
                    """,
                    (
                        int(status.running),
                        last_check,
                        status.last_result,
                        status.total_checks,
                        _to_db_ts(utc_now()),
                    ),
                )
                await self._conn.commit()
            except aiosqlite.Error as exc:
                try:
                    await self._conn.rollback()
                except aiosqlite.Error:
                    logger.debug("Rollback after status save failure also failed", exc_info=True)
                raise StorageError(f"Failed to save watch status: {exc}") from exc

    async def load(self) -> WatchStatus | None:
        """Return the persisted status, or ``None`` if none was ever saved.

        Raises:
            StorageError: If the query fails.
        """
        try:
            cursor = await self._conn.execute(
                """
                SELECT running, last_check_time, last_result, total_checks
                FROM watch_status WHERE id = 1
                """
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to load watch status: {exc}") from exc

        if row is None:
            return None
        return WatchStatus(
            running=bool(row["running"]),
            last_check_time=_from_db_ts(row["last_check_time"]),
            last_result=row["last_result"],
            total_checks=row["total_checks"],
        )
