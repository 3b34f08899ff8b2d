"""Orchestrator entry-point: wire every component and drive the watcher.

:func:`open_service` assembles a ready-to-use :class:`WatchService`:

1. Opens the SQLite database via :func:`~jkkwatch.storage.database.open_db`.
2. Restores the persisted :class:`~jkkwatch.core.models.WatchStatus`
   (always as Idle; timers do not survive a restart).
3. Seeds the broadcaster's backfill window from the log store.
4. Enters the :class:`~jkkwatch.notifiers.telegram.TelegramClient` and the
   probe through one :class:`contextlib.AsyncExitStack`.
5. Builds the :class:`~jkkwatch.orchestrator.pipeline.CheckPipeline` and the
   :class:`~jkkwatch.orchestrator.scheduler.WatchScheduler`.

On exit the timer is stopped, the in-flight cycle (if any) is awaited, and
every resource is released, including on exceptions.

:func:`run_once` and :func:`run_watch` are the two process modes used by
:mod:`jkkwatch.__main__`.

Telegram / dry-run behaviour
----------------------------
Live mode requires ``TELEGRAM_BOT_TOKEN`` and ``TELEGRAM_CHAT_IDS``, or
:func:`open_service` raises :exc:`~jkkwatch.core.exceptions.ConfigError`
before any I/O.  In dry-run mode a placeholder token satisfies the client;
the notifier never calls Telegram in that mode.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import timedelta

from jkkwatch.core.exceptions import ConfigError, StorageError
from jkkwatch.core.models import (
    Event,
    LogAddedEvent,
    LogEntry,
    NotificationEvent,
    NotificationLevel,
    ProgressEvent,
    ScheduleConfig,
    StatusUpdateEvent,
    WatchStatus,
)
from jkkwatch.core.run_context import RunContext
from jkkwatch.core.settings import Settings
from jkkwatch.notifiers.notifier import Notifier
from jkkwatch.notifiers.telegram import TelegramClient
from jkkwatch.orchestrator.broadcaster import DEFAULT_QUEUE_SIZE, EventBroadcaster, Subscription
from jkkwatch.orchestrator.pipeline import CheckPipeline, CheckReport
from jkkwatch.orchestrator.scheduler import WatchScheduler
from jkkwatch.orchestrator.state import WatchState
from jkkwatch.probes.base import BaseProbe
from jkkwatch.probes.jkk import JkkVacancyProbe
from jkkwatch.storage.database import open_db
from jkkwatch.storage.repository import LogStore, StatusRepository

__all__ = [
    "WatchService",
    "open_service",
    "run_once",
    "run_watch",
]

logger = logging.getLogger(__name__)

# Satisfies TelegramClient's constructor in dry-run, where nothing is sent.
_PLACEHOLDER_TOKEN: str = "placeholder:dry_run"


# ---------------------------------------------------------------------------
# Service facade
# ---------------------------------------------------------------------------


class WatchService:
    """Every caller command and query, in one place.

    This is the surface a transport layer (HTTP, WebSocket, CLI) binds to.
    """

    def __init__(
        self,
        *,
        scheduler: WatchScheduler,
        broadcaster: EventBroadcaster,
        log_store: LogStore,
    ) -> None:
        self.scheduler = scheduler
        self.broadcaster = broadcaster
        self._log_store = log_store

    async def start(self) -> None:
        await self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()

    async def run_once(self) -> CheckReport:
        return await self.scheduler.run_once()

    async def check_with_config(self, config: ScheduleConfig) -> CheckReport:
        return await self.scheduler.check_with_config(config)

    def status(self) -> WatchStatus:
        return self.scheduler.status()

    async def logs(self, limit: int = 20) -> list[LogEntry]:
        """Return up to *limit* log entries, newest first.

        Raises:
            StorageError: If the log store cannot be read.
        """
        return await self._log_store.list(limit)

    async def clear_logs(self) -> None:
        """Delete the whole log history, including found entries.

        Raises:
            StorageError: If the log store cannot be cleared.
        """
        await self._log_store.clear()
        self.broadcaster.reset_backlog()

    def subscribe(self) -> Subscription:
        return self.broadcaster.subscribe()


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


@asynccontextmanager
async def open_service(
    settings: Settings,
    ctx: RunContext,
    *,
    probe: BaseProbe | None = None,
    notifier: Notifier | None = None,
) -> AsyncIterator[WatchService]:
    """Build a :class:`WatchService` and tear it down on exit.

    Args:
        settings: Loaded application settings.
        ctx: Operating mode flags.
        probe: Probe to use instead of :class:`JkkVacancyProbe`.
        notifier: Notifier to use instead of the Telegram-backed one.

    Raises:
        ConfigError: In live mode without Telegram credentials.
    """
    if notifier is None and ctx.should_notify and not settings.telegram_configured:
        raise ConfigError(
            "Live mode requires Telegram credentials. "
            "Set TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_IDS in .env (or env vars)."
        )

    logger.info("Opening watch service (mode=%s, db=%s)", ctx.mode_label, settings.database_path)

    conn = await open_db(settings.database_path)
    try:
        retention = timedelta(hours=settings.log_retention_hours)
        write_lock = asyncio.Lock()
        log_store = LogStore(conn, retention=retention, write_lock=write_lock)
        status_repo = StatusRepository(conn, write_lock=write_lock)

        try:
            persisted = await status_repo.load()
        except StorageError as exc:
            logger.warning("Could not restore watch status: %s", exc)
            persisted = None
        state = WatchState(persisted)

        broadcaster = EventBroadcaster(
            state.snapshot,
            backfill_size=settings.backfill_size,
            queue_size=max(DEFAULT_QUEUE_SIZE, settings.backfill_size * 2),
            retention=retention,
        )
        try:
            recent = await log_store.list(settings.backfill_size)
        except StorageError as exc:
            logger.warning("Could not load log backfill: %s", exc)
            recent = []
        broadcaster.seed_backlog(reversed(recent))

        async with AsyncExitStack() as stack:
            if notifier is None:
                token = settings.telegram_bot_token or _PLACEHOLDER_TOKEN
                client = await stack.enter_async_context(TelegramClient(token=token))
                notifier = Notifier(client=client, ctx=ctx)

            if probe is None:
                probe = JkkVacancyProbe(settings.artifacts_dir)
            await stack.enter_async_context(probe)

            pipeline = CheckPipeline(
                probe=probe,
                notifier=notifier,
                recipients=settings.telegram_chat_ids,
                log_store=log_store,
                status_repo=status_repo,
                state=state,
                broadcaster=broadcaster,
                probe_timeout_s=settings.probe_timeout_s,
                notify_timeout_s=settings.notify_timeout_s,
            )
            scheduler = WatchScheduler(
                pipeline=pipeline,
                state=state,
                status_repo=status_repo,
                broadcaster=broadcaster,
                config_loader=settings.to_schedule_config,
            )
            try:
                yield WatchService(
                    scheduler=scheduler,
                    broadcaster=broadcaster,
                    log_store=log_store,
                )
            finally:
                await scheduler.shutdown()
    finally:
        await conn.close()
        logger.debug("Database connection closed.")


# ---------------------------------------------------------------------------
# Process modes
# ---------------------------------------------------------------------------


async def run_once(ctx: RunContext, settings: Settings | None = None) -> CheckReport:
    """Run one check with the configured search and return its report.

    Raises:
        ConfigError: If the configuration is invalid or incomplete.
    """
    if settings is None:
        settings = Settings()

    async with open_service(settings, ctx) as service:
        report = await service.run_once()
    logger.info("%s", report.format_report())
    return report


async def run_watch(ctx: RunContext, settings: Settings | None = None) -> WatchStatus:
    """Start the watcher and follow its events until it stops.

    Returns once the watcher goes Idle: after a delivered notification
    (auto-stop) or a ``SIGTERM``.  ``SIGINT`` (Ctrl+C) cancels the task as
    usual; teardown still stops the timer and waits for the in-flight cycle.

    Returns:
        The final :class:`WatchStatus`.

    Raises:
        ConfigError: If the configuration is invalid or incomplete.
    """
    if settings is None:
        settings = Settings()

    async with open_service(settings, ctx) as service:
        await service.start()

        loop = asyncio.get_running_loop()
        stop_tasks: list[asyncio.Task[None]] = []

        def _request_stop() -> None:
            if not stop_tasks:
                logger.info("Received SIGTERM; stopping the watcher.")
                stop_tasks.append(asyncio.create_task(service.stop()))

        loop.add_signal_handler(signal.SIGTERM, _request_stop)
        try:
            with service.subscribe() as sub:
                async for event in sub:
                    _log_event(event)
                    if isinstance(event, StatusUpdateEvent) and not event.status.running:
                        break
        finally:
            with contextlib.suppress(Exception):
                loop.remove_signal_handler(signal.SIGTERM)

        logger.info("Watcher is idle; shutting down.")

    # Teardown has waited for the in-flight cycle, so this status is final.
    return service.status()


def _log_event(event: Event) -> None:
    if isinstance(event, ProgressEvent):
        logger.info("[%s] %s", event.step.value, event.message)
    elif isinstance(event, LogAddedEvent):
        logger.info("Log: %s%s", event.entry.message, " (found)" if event.entry.found else "")
    elif isinstance(event, NotificationEvent):
        level = logging.WARNING if event.level is NotificationLevel.ERROR else logging.INFO
        logger.log(level, "Notification: %s", event.message)
    else:
        status = event.status
        logger.debug(
            "Status: running=%s total_checks=%d last_result=%r",
            status.running,
            status.total_checks,
            status.last_result,
        )
