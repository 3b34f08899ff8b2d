"""Watch scheduler: the Idle/Running state machine behind start and stop.

:class:`WatchScheduler` owns the repeating timer and the single-flight lock.

States
~~~~~~
* **Idle**: initial state; no timer armed.  ``start()`` moves to Running.
* **Running**: a timer task fires a check every ``interval_seconds``.
  ``stop()`` (manual, or the auto-stop after a delivered notification) moves
  back to Idle.  There is no terminal state; the watcher can be restarted.

``start`` and ``stop`` are serialised by a transition lock, so concurrent
callers observe them one after another.

Single-flight
~~~~~~~~~~~~~
Every cycle, whatever its trigger, runs under one :class:`asyncio.Lock`:

* timer ticks and the immediate start-up cycle that find a cycle in flight
  are **dropped** and logged;
* manual :meth:`~WatchScheduler.run_once` / :meth:`~WatchScheduler.check_with_config`
  calls that find a cycle in flight raise
  :class:`~jkkwatch.core.exceptions.CheckInProgressError`.

The ``locked()`` test and the acquisition happen without an intervening
``await``, so two triggers can never both pass the check.

Checks run in their own tasks, separate from the timer task.  Cancelling the
timer on ``stop()`` therefore never cancels a cycle already in flight; that
cycle runs to completion.

Typical usage::

    scheduler = WatchScheduler(
        pipeline=pipeline,
        state=state,
        status_repo=status_repo,
        broadcaster=broadcaster,
        config_loader=settings.to_schedule_config,
    )
    await scheduler.start()
    ...
    await scheduler.stop()
    await scheduler.wait_idle()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import NoReturn

from jkkwatch.core import events
from jkkwatch.core.exceptions import CheckInProgressError, ConfigError, StorageError
from jkkwatch.core.models import ScheduleConfig, StatusUpdateEvent, WatchStatus
from jkkwatch.orchestrator.broadcaster import EventBroadcaster
from jkkwatch.orchestrator.pipeline import CheckPipeline, CheckReport
from jkkwatch.orchestrator.state import WatchState
from jkkwatch.storage.repository import StatusRepository

__all__ = ["WatchScheduler"]

logger = logging.getLogger(__name__)


class WatchScheduler:
    """Start/stop state machine with a repeating timer and single-flight checks.

    Args:
        pipeline: Executes one check cycle.
        state: Shared in-memory status.
        status_repo: Persistence for the status record.
        broadcaster: Event fan-out to subscribers.
        config_loader: Returns the saved :class:`ScheduleConfig`.  Any
            exception it raises is reported as :class:`ConfigError`.
    """

    def __init__(
        self,
        *,
        pipeline: CheckPipeline,
        state: WatchState,
        status_repo: StatusRepository,
        broadcaster: EventBroadcaster,
        config_loader: Callable[[], ScheduleConfig],
    ) -> None:
        self._pipeline = pipeline
        self._state = state
        self._status_repo = status_repo
        self._broadcaster = broadcaster
        self._config_loader = config_loader

        self._check_lock = asyncio.Lock()
        self._transition_lock = asyncio.Lock()
        self._timer_task: asyncio.Task[NoReturn] | None = None
        self._check_tasks: set[asyncio.Task[CheckReport | None]] = set()
        self._skipped_ticks = 0

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def status(self) -> WatchStatus:
        """Return a consistent snapshot of the watcher status."""
        return self._state.snapshot()

    @property
    def running(self) -> bool:
        return self._state.running

    @property
    def check_in_progress(self) -> bool:
        return self._check_lock.locked()

    @property
    def timer_armed(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    @property
    def skipped_ticks(self) -> int:
        """Scheduled cycles dropped because another cycle was in flight."""
        return self._skipped_ticks

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Move from Idle to Running.

        Runs one check immediately (in the background) and arms the repeating
        timer.  A no-op when already running.

        Raises:
            ConfigError: If no valid configuration could be loaded.  The
                scheduler stays Idle.
        """
        async with self._transition_lock:
            if self._state.running:
                logger.info(
                    "Watch already running; start ignored",
                    extra={"event": events.WATCH_ALREADY_RUNNING},
                )
                return

            config = self._load_config()

            status = self._state.set_running(True)
            await self._persist_status(status)
            self._broadcaster.publish(StatusUpdateEvent(status=status))
            logger.info(
                "Watch started (interval=%.0fs, kana_name=%r)",
                config.interval_seconds,
                config.criteria.kana_name,
                extra={"event": events.WATCH_START},
            )

            self._spawn_check(config)
            self._timer_task = asyncio.create_task(
                self._timer_loop(config), name="jkkwatch-timer"
            )

    async def stop(self) -> None:
        """Move to Idle.  Idempotent and never raises.

        Disarms the timer.  A cycle already in flight is left to finish.
        """
        async with self._transition_lock:
            timer, self._timer_task = self._timer_task, None
            if timer is not None and timer is not asyncio.current_task():
                timer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await timer

            was_running = self._state.running
            status = self._state.set_running(False)
            await self._persist_status(status)
            self._broadcaster.publish(StatusUpdateEvent(status=status))
            if was_running:
                logger.info("Watch stopped", extra={"event": events.WATCH_STOP})
            else:
                logger.debug("Watch already idle; stop re-published status")

    # ------------------------------------------------------------------
    # Manual checks
    # ------------------------------------------------------------------

    async def run_once(self) -> CheckReport:
        """Run one cycle with the saved configuration.

        Running state and the timer are left untouched.

        Raises:
            ConfigError: If no valid configuration could be loaded.
            CheckInProgressError: If another cycle is in flight.
        """
        return await self.check_with_config(self._load_config())

    async def check_with_config(self, config: ScheduleConfig) -> CheckReport:
        """Run one cycle with caller-supplied parameters that are not saved.

        Raises:
            CheckInProgressError: If another cycle is in flight.
        """
        if self._check_lock.locked():
            logger.info(
                "Manual check rejected: a check is already in progress",
                extra={"event": events.CHECK_REJECTED},
            )
            raise CheckInProgressError()
        async with self._check_lock:
            return await self._pipeline.execute_check(config, on_delivered=self.stop)

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    async def wait_idle(self) -> None:
        """Wait until every spawned check task has finished."""
        while self._check_tasks:
            await asyncio.gather(*list(self._check_tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop the timer and wait for the in-flight cycle, if any."""
        await self.stop()
        await self.wait_idle()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_config(self) -> ScheduleConfig:
        try:
            return self._config_loader()
        except ConfigError as exc:
            logger.error("Invalid watch configuration: %s", exc, extra={"event": events.WATCH_CONFIG_ERROR})
            raise
        except Exception as exc:
            logger.error(
                "Could not load watch configuration: %s",
                exc,
                extra={"event": events.WATCH_CONFIG_ERROR},
            )
            raise ConfigError(f"Could not load watch configuration: {exc}") from exc

    async def _timer_loop(self, config: ScheduleConfig) -> NoReturn:
        while True:
            await asyncio.sleep(config.interval_seconds)
            self._spawn_check(config)

    def _spawn_check(self, config: ScheduleConfig) -> None:
        task = asyncio.create_task(self._scheduled_check(config), name="jkkwatch-check")
        self._check_tasks.add(task)
        task.add_done_callback(self._check_tasks.discard)

    async def _scheduled_check(self, config: ScheduleConfig) -> CheckReport | None:
        if self._check_lock.locked():
            self._skipped_ticks += 1
            logger.info(
                "Scheduled check skipped: previous check still running (skipped=%d)",
                self._skipped_ticks,
                extra={"event": events.CHECK_SKIPPED},
            )
            return None
        async with self._check_lock:
            return await self._pipeline.execute_check(config, on_delivered=self.stop)

    async def _persist_status(self, status: WatchStatus) -> None:
        try:
            await self._status_repo.save(status)
        except StorageError as exc:
            logger.warning("Status not persisted: %s", exc, extra={"event": events.STORAGE_ERROR})
