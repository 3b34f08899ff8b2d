"""Fan-out of watcher events to any number of live subscribers.

Each subscriber owns a bounded :class:`asyncio.Queue`.  :meth:`EventBroadcaster.publish`
is synchronous and uses ``put_nowait``: a subscriber whose queue is full loses
that event (it is counted on the :class:`Subscription` and logged) while every
other subscriber still receives it.  A slow consumer therefore never stalls
the check pipeline.

Late joiners
------------
:meth:`EventBroadcaster.subscribe` enqueues, before any live event, one
``StatusUpdate`` with the current status and a backfill of the most recent
log entries (as ``LogAdded`` events, oldest first).  The backfill window is
kept in memory: it is seeded from the log store once at start-up and extended
by every published ``LogAdded``, so subscribing needs no I/O and cannot
interleave with a concurrent publish.  Given a ``retention`` window, each
published ``LogAdded`` also drops expired not-found entries, the same rule
and timing as :meth:`~jkkwatch.storage.repository.LogStore.append`, so the
backfill stays equal to the retained log.

Typical usage::

    broadcaster = EventBroadcaster(state.snapshot, backfill_size=100)

    async with broadcaster.subscribe() as sub:
        async for event in sub:
            print(event.model_dump_json())
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import deque
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from typing import Final

from jkkwatch.core import events
from jkkwatch.core.models import (
    Event,
    LogAddedEvent,
    LogEntry,
    StatusUpdateEvent,
    WatchStatus,
    utc_now,
)

__all__ = [
    "DEFAULT_BACKFILL_SIZE",
    "DEFAULT_QUEUE_SIZE",
    "EventBroadcaster",
    "Subscription",
]

logger = logging.getLogger(__name__)

#: Number of recent log entries replayed to a new subscriber.
DEFAULT_BACKFILL_SIZE: Final[int] = 100

#: Per-subscriber queue capacity.  Must exceed the backfill plus the status
#: snapshot so a fresh subscriber never drops its own backfill.
DEFAULT_QUEUE_SIZE: Final[int] = 1000


class Subscription:
    """Handle returned by :meth:`EventBroadcaster.subscribe`.

    Attributes:
        id: Process-unique subscriber number, used in log lines.
        dropped: Events discarded because this subscriber's queue was full.
    """

    def __init__(self, broadcaster: EventBroadcaster, sub_id: int, maxsize: int) -> None:
        self.id = sub_id
        self.dropped = 0
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)

    @property
    def active(self) -> bool:
        return self._broadcaster.is_subscribed(self)

    def pending(self) -> int:
        """Number of events waiting to be consumed."""
        return self._queue.qsize()

    async def get(self) -> Event:
        """Wait for and return the next event."""
        return await self._queue.get()

    def get_nowait(self) -> Event:
        """Return the next event.

        Raises:
            asyncio.QueueEmpty: If nothing is queued.
        """
        return self._queue.get_nowait()

    def drain(self) -> list[Event]:
        """Return every queued event without waiting."""
        drained: list[Event] = []
        while not self._queue.empty():
            drained.append(self._queue.get_nowait())
        return drained

    def close(self) -> None:
        self._broadcaster.unsubscribe(self)

    def _offer(self, event: Event) -> bool:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> Event:
        return await self.get()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *_: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Subscription(id={self.id}, pending={self.pending()}, dropped={self.dropped})"


class EventBroadcaster:
    """Multi-subscriber event fan-out with a late-joiner backfill.

    Args:
        status_provider: Returns the current :class:`WatchStatus` snapshot.
        backfill_size: How many recent log entries a new subscriber receives.
        queue_size: Per-subscriber queue capacity.
        retention: Age beyond which not-found entries leave the backfill,
            matching the log store.  ``None`` keeps them until pushed out.
        clock: Returns the current UTC time; injectable for tests.

    Raises:
        ValueError: If *queue_size* cannot hold the backfill plus the status
            snapshot, or *retention* is not positive.
    """

    def __init__(
        self,
        status_provider: Callable[[], WatchStatus],
        *,
        backfill_size: int = DEFAULT_BACKFILL_SIZE,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        retention: timedelta | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if backfill_size < 0:
            raise ValueError(f"backfill_size must be >= 0, got {backfill_size}.")
        if queue_size <= backfill_size:
            raise ValueError(
                f"queue_size ({queue_size}) must exceed backfill_size ({backfill_size})."
            )
        if retention is not None and retention <= timedelta(0):
            raise ValueError(f"retention must be positive, got {retention!r}.")
        self._status_provider = status_provider
        self._backfill_size = backfill_size
        self._queue_size = queue_size
        self._retention = retention
        self._clock = clock
        self._backlog: deque[LogEntry] = deque(maxlen=backfill_size)
        self._subscribers: dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Backfill window
    # ------------------------------------------------------------------

    def seed_backlog(self, entries: Iterable[LogEntry]) -> None:
        """Replace the backfill window with *entries* given oldest first."""
        self._backlog.clear()
        self._backlog.extend(entries)

    def reset_backlog(self) -> None:
        self._backlog.clear()

    def backlog(self) -> list[LogEntry]:
        """Return the backfill window, oldest first."""
        return list(self._backlog)

    def _expire_backlog(self) -> None:
        if self._retention is None:
            return
        cutoff = self._clock() - self._retention
        kept = [entry for entry in self._backlog if entry.found or entry.timestamp >= cutoff]
        if len(kept) != len(self._backlog):
            logger.debug("Backfill dropped %d expired entr(y/ies)", len(self._backlog) - len(kept))
            self._backlog = deque(kept, maxlen=self._backfill_size)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def is_subscribed(self, sub: Subscription) -> bool:
        return self._subscribers.get(sub.id) is sub

    def subscribe(self) -> Subscription:
        """Register a new subscriber and queue its initial snapshot.

        The returned subscription first yields one ``StatusUpdate`` and then
        the backfilled ``LogAdded`` events, oldest first, before any live
        event.
        """
        sub = Subscription(self, next(self._ids), self._queue_size)
        sub._offer(StatusUpdateEvent(status=self._status_provider()))
        for entry in self._backlog:
            sub._offer(LogAddedEvent(entry=entry))
        self._subscribers[sub.id] = sub
        logger.debug(
            "Subscriber %d added (backfill=%d, total=%d)",
            sub.id,
            len(self._backlog),
            len(self._subscribers),
            extra={"event": events.SUBSCRIBER_ADDED},
        )
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        """Remove *sub*.  Calling this for an unknown subscriber is a no-op."""
        if self._subscribers.pop(sub.id, None) is None:
            return
        logger.debug(
            "Subscriber %d removed (dropped=%d, total=%d)",
            sub.id,
            sub.dropped,
            len(self._subscribers),
            extra={"event": events.SUBSCRIBER_REMOVED},
        )

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, event: Event) -> None:
        """Deliver *event* to every active subscriber, in publish order."""
        if isinstance(event, LogAddedEvent) and self._backfill_size:
            self._backlog.append(event.entry)
            self._expire_backlog()

        for sub in list(self._subscribers.values()):
            if not sub._offer(event):
                logger.warning(
                    "Subscriber %d is lagging; dropped %s event (dropped total=%d)",
                    sub.id,
                    event.type,
                    sub.dropped,
                    extra={"event": events.SUBSCRIBER_LAGGING},
                )
