"""Single check cycle: probe → log → notify → auto-stop.

:class:`CheckPipeline` runs exactly one cycle per :meth:`~CheckPipeline.execute_check`
call.  The caller (the scheduler) holds the single-flight lock for the whole
call, so cycles never interleave.  Each cycle threads through these stages:

1. **Announce**: publish ``Progress{start}`` then ``Progress{searching}``.
2. **Probe**: call :meth:`~jkkwatch.probes.base.BaseProbe.search` under a
   hard timeout.  A timeout or stray exception becomes a ``failed`` result.
   On timeout the probe is cancelled and its cleanup awaited, so a probe must
   bound its own teardown (the JKK probe caps closing Chromium).
3. **Account**: bump ``total_checks`` and record ``last_check_time`` /
   ``last_result`` on the shared :class:`~jkkwatch.orchestrator.state.WatchState`.
4. **Log**: append a :class:`~jkkwatch.core.models.LogEntry` for the
   outcome and publish ``LogAdded``.
5. **Notify**: on ``found``, publish ``Progress{found}`` and
   ``Notification{success}``, deliver the screenshot, log the delivery outcome
   (always ``found=True``) and, when delivery succeeded, invoke
   ``on_delivered`` (the scheduler's ``stop``).
6. **Finish**: persist the status, publish one ``StatusUpdate`` and then
   ``Progress{complete}`` (or ``Progress{error}``).

Failure isolation
-----------------
Nothing raised inside a cycle escapes :meth:`execute_check`.  Probe and
delivery failures are ordinary outcomes.  Anything else is a *hard error*: it
is logged with a traceback, recorded as one extra ``found=False`` log entry,
and published as ``Notification{error}``; the cycle still ends with
``StatusUpdate`` + ``Progress{error}``.  Storage failures never abort a cycle:
the entry is still broadcast and the in-memory status stays authoritative.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime

from jkkwatch.core import events
from jkkwatch.core.exceptions import StorageError
from jkkwatch.core.logging_config import CHECK_ID_CTX
from jkkwatch.core.models import (
    DeliveryResult,
    LogAddedEvent,
    LogEntry,
    NotificationEvent,
    NotificationLevel,
    ProbeOutcome,
    ProbeResult,
    ProgressEvent,
    ProgressStep,
    ScheduleConfig,
    SearchCriteria,
    StatusUpdateEvent,
    utc_now,
)
from jkkwatch.notifiers.notifier import Notifier
from jkkwatch.orchestrator.broadcaster import EventBroadcaster
from jkkwatch.orchestrator.state import WatchState
from jkkwatch.probes.base import BaseProbe
from jkkwatch.storage.repository import LogStore, StatusRepository

__all__ = [
    "DELIVERY_OK_MESSAGE",
    "CheckReport",
    "CheckPipeline",
]

logger = logging.getLogger(__name__)

#: Log message recorded after a successful delivery.
DELIVERY_OK_MESSAGE: str = "Notification sent. Watching stopped."

#: ``last_result`` after a successful delivery.
_DELIVERED_SUMMARY: str = "Vacancy found. Notification sent. Watching stopped."

OnDelivered = Callable[[], Awaitable[None]]


@dataclass
class CheckReport:
    """Summary of one :meth:`CheckPipeline.execute_check` call.

    Attributes:
        check_id: Short cycle identifier, also present on every log record
            emitted during the cycle.
        outcome: Probe outcome, or ``None`` when a hard error struck before
            the probe returned.
        delivered: ``True`` if the notifier reported success.
        entries_appended: Log entries created by the cycle (persisted or not).
        error: Probe, delivery or hard-error description, if any.
        duration_s: Wall-clock seconds spent in the cycle.
    """

    check_id: str
    outcome: ProbeOutcome | None = None
    delivered: bool = False
    entries_appended: int = 0
    error: str | None = None
    duration_s: float = 0.0

    @property
    def errored(self) -> bool:
        """``True`` when the cycle ended with ``Progress{error}``."""
        return self.outcome is None or self.outcome is ProbeOutcome.FAILED

    def format_report(self) -> str:
        outcome = self.outcome.value if self.outcome is not None else "hard-error"
        parts = [
            f"Check {self.check_id} finished in {self.duration_s:.1f}s",
            f"outcome={outcome}",
            f"delivered={self.delivered}",
            f"entries={self.entries_appended}",
        ]
        if self.error:
            parts.append(f"error={self.error!r}")
        return " | ".join(parts)


class CheckPipeline:
    """Runs check cycles against the shared watcher state.

    Args:
        probe: Searches for a vacancy.
        notifier: Delivers the screenshot of a positive result.
        recipients: Chat IDs handed to the notifier.
        log_store: Persistent history of outcomes.
        status_repo: Persistence for the status record.
        state: Shared in-memory status.
        broadcaster: Event fan-out to subscribers.
        probe_timeout_s: Hard ceiling for one probe call.
        notify_timeout_s: Hard ceiling for one notifier call.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        *,
        probe: BaseProbe,
        notifier: Notifier,
        recipients: Sequence[str],
        log_store: LogStore,
        status_repo: StatusRepository,
        state: WatchState,
        broadcaster: EventBroadcaster,
        probe_timeout_s: float = 120.0,
        notify_timeout_s: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._probe = probe
        self._notifier = notifier
        self._recipients = list(recipients)
        self._log_store = log_store
        self._status_repo = status_repo
        self._state = state
        self._broadcaster = broadcaster
        self._probe_timeout_s = probe_timeout_s
        self._notify_timeout_s = notify_timeout_s
        self._clock = clock

    async def execute_check(
        self,
        config: ScheduleConfig,
        *,
        on_delivered: OnDelivered | None = None,
    ) -> CheckReport:
        """Run one full cycle.  Never raises (except on task cancellation).

        Args:
            config: Search criteria and browser mode for this cycle.
            on_delivered: Awaited after a successful delivery.

        Returns:
            A :class:`CheckReport` describing the cycle.
        """
        check_id = uuid.uuid4().hex[:8]
        token = CHECK_ID_CTX.set(check_id)
        report = CheckReport(check_id=check_id)
        t0 = time.monotonic()
        try:
            logger.info(
                "Check started for %r (headless=%s)",
                config.criteria.kana_name,
                config.headless,
                extra={"event": events.CHECK_START},
            )
            try:
                await self._run(config, on_delivered, report)
            except Exception as exc:  # noqa: BLE001
                await self._handle_hard_error(exc, report)

            await self._persist_status()
            self._broadcaster.publish(StatusUpdateEvent(status=self._state.snapshot()))
            if report.errored:
                self._broadcaster.publish(
                    ProgressEvent(step=ProgressStep.ERROR, message="Check finished with an error.")
                )
            else:
                self._broadcaster.publish(
                    ProgressEvent(step=ProgressStep.COMPLETE, message="Check complete.")
                )

            report.duration_s = time.monotonic() - t0
            logger.info("%s", report.format_report(), extra={"event": events.CHECK_COMPLETE})
            return report
        finally:
            CHECK_ID_CTX.reset(token)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _run(
        self,
        config: ScheduleConfig,
        on_delivered: OnDelivered | None,
        report: CheckReport,
    ) -> None:
        started_at = self._clock()
        self._broadcaster.publish(
            ProgressEvent(step=ProgressStep.START, message="Starting check...")
        )
        self._broadcaster.publish(
            ProgressEvent(step=ProgressStep.SEARCHING, message="Searching for vacancies...")
        )

        result = await self._probe_with_timeout(config.criteria, config.headless)
        report.outcome = result.outcome
        self._state.record_check(started_at, result.message)

        await self._append(
            LogEntry(
                timestamp=started_at,
                message=result.message,
                found=result.is_found,
                artifact_ref=result.artifact_ref,
            ),
            report,
        )

        if result.is_failed:
            report.error = result.error
            logger.warning(
                "Probe failed: %s", result.error, extra={"event": events.PROBE_FAILED}
            )
            self._broadcaster.publish(
                NotificationEvent(
                    level=NotificationLevel.ERROR,
                    message=f"Check failed: {result.error}",
                )
            )
            return

        if not result.is_found:
            logger.info("No vacancy found", extra={"event": events.PROBE_NOT_FOUND})
            return

        logger.info(
            "Vacancy found; screenshot at %s",
            result.artifact_ref,
            extra={"event": events.PROBE_FOUND},
        )
        self._broadcaster.publish(
            ProgressEvent(step=ProgressStep.FOUND, message="Vacancy found! Sending notification...")
        )
        self._broadcaster.publish(
            NotificationEvent(level=NotificationLevel.SUCCESS, message="A vacancy is available!")
        )

        artifact_ref = result.artifact_ref or ""
        delivery = await self._deliver(artifact_ref, config.criteria)

        if delivery.ok:
            report.delivered = True
            await self._append(
                LogEntry(
                    timestamp=self._clock(),
                    message=DELIVERY_OK_MESSAGE,
                    found=True,
                    artifact_ref=artifact_ref,
                ),
                report,
            )
            if on_delivered is not None:
                await on_delivered()
            self._state.set_last_result(_DELIVERED_SUMMARY)
            return

        report.error = delivery.error
        await self._append(
            LogEntry(
                timestamp=self._clock(),
                message=f"Notification failed: {delivery.error}",
                found=True,
                artifact_ref=artifact_ref,
            ),
            report,
        )
        self._broadcaster.publish(
            NotificationEvent(
                level=NotificationLevel.ERROR,
                message=f"Notification failed: {delivery.error}",
            )
        )
        self._state.set_last_result(
            f"Vacancy found, but the notification failed: {delivery.error}"
        )

    async def _probe_with_timeout(self, criteria: SearchCriteria, headless: bool) -> ProbeResult:
        try:
            return await asyncio.wait_for(
                self._probe.search(criteria, headless),
                timeout=self._probe_timeout_s,
            )
        except TimeoutError:
            logger.error(
                "Probe %r timed out after %.0fs",
                self._probe.name,
                self._probe_timeout_s,
                extra={"event": events.PROBE_TIMEOUT},
            )
            return ProbeResult.failed(f"probe timed out after {self._probe_timeout_s:.0f}s")
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Probe %r raised: %s",
                self._probe.name,
                exc,
                exc_info=True,
                extra={"event": events.PROBE_FAILED},
            )
            return ProbeResult.failed(str(exc) or type(exc).__name__)

    async def _deliver(self, artifact_ref: str, criteria: SearchCriteria) -> DeliveryResult:
        try:
            delivery = await asyncio.wait_for(
                self._notifier.send(self._recipients, artifact_ref, criteria=criteria),
                timeout=self._notify_timeout_s,
            )
        except TimeoutError:
            delivery = DeliveryResult.failure(
                f"notifier timed out after {self._notify_timeout_s:.0f}s"
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Notifier raised: %s", exc, exc_info=True)
            delivery = DeliveryResult.failure(str(exc) or type(exc).__name__)

        if delivery.ok:
            logger.info(
                "Notification delivered to %d recipient(s)",
                len(delivery.delivered_to),
                extra={"event": events.DELIVERY_OK},
            )
        else:
            logger.error(
                "Notification failed: %s",
                delivery.error,
                extra={"event": events.DELIVERY_FAILED},
            )
        return delivery

    async def _handle_hard_error(self, exc: Exception, report: CheckReport) -> None:
        logger.exception("Unexpected error during check", extra={"event": events.CHECK_ERROR})
        message = f"Error: {exc}"
        report.outcome = None
        report.error = str(exc)
        self._state.set_last_result(message)
        await self._append(LogEntry(timestamp=self._clock(), message=message), report)
        self._broadcaster.publish(
            NotificationEvent(
                level=NotificationLevel.ERROR,
                message="An error occurred during the check.",
            )
        )

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    async def _append(self, entry: LogEntry, report: CheckReport) -> None:
        """Persist *entry* and broadcast it.  Storage failures are logged only."""
        try:
            await self._log_store.append(entry)
        except StorageError as exc:
            logger.warning(
                "Log entry not persisted: %s", exc, extra={"event": events.STORAGE_ERROR}
            )
        report.entries_appended += 1
        self._broadcaster.publish(LogAddedEvent(entry=entry))

    async def _persist_status(self) -> None:
        try:
            await self._status_repo.save(self._state.snapshot())
        except StorageError as exc:
            logger.warning(
                "Status not persisted: %s", exc, extra={"event": events.STORAGE_ERROR}
            )
