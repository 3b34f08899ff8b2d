"""In-memory owner of the watcher's :class:`~jkkwatch.core.models.WatchStatus`.

Every mutator runs synchronously, without awaiting, so a reader on the event
loop can never observe a half-applied update.  :meth:`WatchState.snapshot`
hands out a copy; callers may keep it without seeing later changes.
"""

from __future__ import annotations

import logging
from datetime import datetime

from jkkwatch.core.models import WatchStatus

__all__ = ["WatchState"]

logger = logging.getLogger(__name__)


class WatchState:
    """Mutable holder of the single :class:`WatchStatus` record.

    Args:
        initial: Status restored from persistence.  ``running`` is always
            reset to ``False``: no timer survives a restart.
    """

    def __init__(self, initial: WatchStatus | None = None) -> None:
        base = initial or WatchStatus()
        self._status = base.model_copy(update={"running": False})

    def snapshot(self) -> WatchStatus:
        return self._status.model_copy()

    @property
    def running(self) -> bool:
        return self._status.running

    def set_running(self, running: bool) -> WatchStatus:
        self._status = self._status.model_copy(update={"running": running})
        return self.snapshot()

    def record_check(self, at: datetime, result: str) -> WatchStatus:
        """Account for one completed probe attempt."""
        self._status = self._status.model_copy(
            update={
                "last_check_time": at,
                "last_result": result,
                "total_checks": self._status.total_checks + 1,
            }
        )
        return self.snapshot()

    def set_last_result(self, result: str) -> WatchStatus:
        self._status = self._status.model_copy(update={"last_result": result})
        return self.snapshot()
