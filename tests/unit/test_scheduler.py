"""Unit tests for the watch scheduler.

Tests cover:
- Idle ⇄ Running transitions, idempotence, and restart after stop.
- Concurrent start/stop calls never leave more than one timer armed.
- The timer is armed exactly while running.
- The immediate check on ``start`` and repeated timer checks, including
  three not-found cycles that keep the watcher running.
- Single-flight: busy timer ticks are dropped, manual checks are rejected.
- Auto-stop after a delivered notification.
- Configuration failures leave the scheduler Idle.
- ``stop`` never cancels a cycle already in flight.
- Manual checks leave the running state untouched.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from jkkwatch.core.exceptions import CheckInProgressError, ConfigError
from jkkwatch.core.models import (
    DeliveryResult,
    LogAddedEvent,
    ProbeOutcome,
    ProbeResult,
    ProgressEvent,
    ScheduleConfig,
    SearchCriteria,
    StatusUpdateEvent,
)

from conftest import Harness, RecordingNotifier, ScriptedProbe

_SHOT = "/data/screenshots/property_20261016_120000.png"


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll *predicate* on the event loop until it holds or *timeout* expires."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


def _gated(*script: ProbeResult) -> ScriptedProbe:
    probe = ScriptedProbe(list(script))
    probe.gate = asyncio.Event()
    return probe


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


class TestStartStop:
    async def test_initially_idle(self, make_harness: Callable[..., Harness]) -> None:
        h = make_harness()
        assert h.scheduler.running is False
        assert h.scheduler.timer_armed is False
        assert h.scheduler.status().total_checks == 0

    async def test_start_runs_immediately_and_arms_timer(
        self, make_harness: Callable[..., Harness]
    ) -> None:
        h = make_harness()

        await h.scheduler.start()

        assert h.scheduler.running is True
        assert h.scheduler.timer_armed is True
        await asyncio.wait_for(h.probe.entered.wait(), timeout=1.0)
        await h.scheduler.stop()
        await h.scheduler.wait_idle()
        assert h.scheduler.status().total_checks >= 1

    async def test_start_is_idempotent(self, make_harness: Callable[..., Harness]) -> None:
        h = make_harness(_gated())

        await h.scheduler.start()
        await h.scheduler.start()

        assert h.config_loader_calls == 1
        await asyncio.wait_for(h.probe.entered.wait(), timeout=1.0)
        assert len(h.probe.calls) == 1

    async def test_stop_disarms_timer(self, make_harness: Callable[..., Harness]) -> None:
        h = make_harness()
        await h.scheduler.start()

        await h.scheduler.stop()

        assert h.scheduler.running is False
        assert h.scheduler.timer_armed is False

    async def test_stop_when_idle_is_harmless(self, make_harness: Callable[..., Harness]) -> None:
        h = make_harness()
        sub = h.broadcaster.subscribe()
        sub.drain()

        await h.scheduler.stop()
        await h.scheduler.stop()

        assert h.scheduler.running is False
        events = sub.drain()
        assert all(isinstance(e, StatusUpdateEvent) for e in events)
        assert all(e.status.running is False for e in events)

    async def test_restart_after_stop(self, make_harness: Callable[..., Harness]) -> None:
        h = make_harness()
        await h.scheduler.start()
        await h.scheduler.stop()

        await h.scheduler.start()

        assert h.scheduler.running is True
        assert h.scheduler.timer_armed is True
        assert h.config_loader_calls == 2

    async def test_start_publishes_running_status_before_first_check(
        self, make_harness: Callable[..., Harness]
    ) -> None:
        h = make_harness()
        sub = h.broadcaster.subscribe()
        sub.drain()

        await h.scheduler.start()
        await _wait_until(lambda: h.scheduler.status().total_checks >= 1)
        await h.scheduler.stop()

        events = sub.drain()
        assert isinstance(events[0], StatusUpdateEvent)
        assert events[0].status.running is True
        assert isinstance(events[1], ProgressEvent)

    async def test_status_persisted_on_transitions(
        self, make_harness: Callable[..., Harness]
    ) -> None:
        h = make_harness(_gated())

        await h.scheduler.start()
        persisted = await h.status_repo.load()
        assert persisted is not None
        assert persisted.running is True

        await h.scheduler.stop()
        persisted = await h.status_repo.load()
        assert persisted is not None
        assert persisted.running is False

    @pytest.mark.parametrize(
        "sequence",
        [
            ("start", "start", "stop", "start"),
            ("start", "stop", "start", "stop"),
            ("stop", "start", "start", "start"),
            ("start", "stop", "stop"),
        ],
    )
    async def test_concurrent_transitions_arm_at_most_one_timer(
        self, make_harness: Callable[..., Harness], sequence: tuple[str, ...]
    ) -> None:
        h = make_harness(_gated())
        commands = {"start": h.scheduler.start, "stop": h.scheduler.stop}

        await asyncio.gather(*(commands[name]() for name in sequence))

        expected = sequence[-1] == "start"
        live_timers = [
            task
            for task in asyncio.all_tasks()
            if task.get_name() == "jkkwatch-timer" and not task.done()
        ]
        assert h.scheduler.running is expected
        assert h.scheduler.timer_armed is expected
        assert len(live_timers) == int(expected)


class TestTimer:
    async def test_timer_fires_repeated_checks(
        self, make_harness: Callable[..., Harness]
    ) -> None:
        h = make_harness()

        await h.scheduler.start()
        await _wait_until(lambda: len(h.probe.calls) >= 3)
        await h.scheduler.stop()
        await h.scheduler.wait_idle()

        assert h.scheduler.status().total_checks >= 3

    async def test_three_not_found_ticks_keep_watching(
        self, make_harness: Callable[..., Harness]
    ) -> None:
        h = make_harness(_gated())
        gate = h.probe.gate
        assert gate is not None

        await h.scheduler.start()
        for n in range(1, 4):
            await _wait_until(lambda n=n: len(h.probe.calls) == n)
            # Release exactly this call; the next one waits on the cleared gate.
            gate.set()
            gate.clear()
            await _wait_until(lambda n=n: h.scheduler.status().total_checks == n)
        # A fourth call only enters once the third cycle has released the lock.
        await _wait_until(lambda: len(h.probe.calls) == 4)

        status = h.scheduler.status()
        entries = await h.log_store.list(100)
        assert status.total_checks == 3
        assert status.running is True
        assert h.scheduler.timer_armed is True
        assert len(entries) == 3
        assert all(entry.found is False for entry in entries)

    async def test_no_checks_after_stop(self, make_harness: Callable[..., Harness]) -> None:
        h = make_harness()
        await h.scheduler.start()
        await _wait_until(lambda: len(h.probe.calls) >= 1)
        await h.scheduler.stop()
        await h.scheduler.wait_idle()
        calls = len(h.probe.calls)

        await asyncio.sleep(h.config.interval_seconds * 4)

        assert len(h.probe.calls) == calls


# ---------------------------------------------------------------------------
# Single-flight
# ---------------------------------------------------------------------------


class TestSingleFlight:
    async def test_busy_ticks_are_skipped(self, make_harness: Callable[..., Harness]) -> None:
        h = make_harness(_gated())

        await h.scheduler.start()
        await asyncio.wait_for(h.probe.entered.wait(), timeout=1.0)
        await _wait_until(lambda: h.scheduler.skipped_ticks >= 2)

        assert len(h.probe.calls) == 1
        assert h.scheduler.check_in_progress is True

        assert h.probe.gate is not None
        h.probe.gate.set()
        await h.scheduler.stop()
        await h.scheduler.wait_idle()
        assert h.scheduler.check_in_progress is False

    async def test_manual_check_rejected_while_busy(
        self, make_harness: Callable[..., Harness]
    ) -> None:
        h = make_harness(_gated())
        await h.scheduler.start()
        await asyncio.wait_for(h.probe.entered.wait(), timeout=1.0)

        with pytest.raises(CheckInProgressError):
            await h.scheduler.run_once()
        with pytest.raises(CheckInProgressError):
            await h.scheduler.check_with_config(h.config)

        assert len(h.probe.calls) == 1

    async def test_concurrent_manual_checks(self, make_harness: Callable[..., Harness]) -> None:
        h = make_harness(_gated())

        first = asyncio.create_task(h.scheduler.run_once())
        await asyncio.wait_for(h.probe.entered.wait(), timeout=1.0)
        with pytest.raises(CheckInProgressError):
            await h.scheduler.run_once()

        assert h.probe.gate is not None
        h.probe.gate.set()
        report = await first
        assert report.outcome is ProbeOutcome.NOT_FOUND
        assert h.scheduler.status().total_checks == 1


# ---------------------------------------------------------------------------
# Auto-stop
# ---------------------------------------------------------------------------


class TestAutoStop:
    async def test_delivery_stops_watch(self, make_harness: Callable[..., Harness]) -> None:
        h = make_harness(ScriptedProbe([ProbeResult.found(_SHOT)]))

        await h.scheduler.start()
        await _wait_until(lambda: not h.scheduler.running)
        await h.scheduler.wait_idle()

        assert h.scheduler.timer_armed is False
        assert len(h.notifier.calls) == 1
        assert len(h.probe.calls) == 1
        entries = await h.log_store.list()
        assert [e.found for e in entries] == [True, True]

    async def test_final_status_update_shows_idle(
        self, make_harness: Callable[..., Harness]
    ) -> None:
        h = make_harness(ScriptedProbe([ProbeResult.found(_SHOT)]))
        sub = h.broadcaster.subscribe()
        sub.drain()

        await h.scheduler.start()
        await _wait_until(lambda: not h.scheduler.running)
        await h.scheduler.wait_idle()

        statuses = [e for e in sub.drain() if isinstance(e, StatusUpdateEvent)]
        assert statuses[0].status.running is True
        assert statuses[-1].status.running is False
        assert "Notification sent" in (statuses[-1].status.last_result or "")

    async def test_failed_delivery_keeps_watching(
        self, make_harness: Callable[..., Harness]
    ) -> None:
        h = make_harness(
            ScriptedProbe([ProbeResult.found(_SHOT)]),
            RecordingNotifier(DeliveryResult.failure("HTTP 400: chat not found")),
        )

        await h.scheduler.start()
        await _wait_until(lambda: len(h.probe.calls) >= 2)

        assert h.scheduler.running is True
        assert h.scheduler.timer_armed is True

    async def test_manual_check_delivery_stops_running_watch(
        self, make_harness: Callable[..., Harness]
    ) -> None:
        slow = ScheduleConfig(criteria=SearchCriteria(kana_name="ハイツ"), interval_seconds=60.0)
        h = make_harness(config=slow)
        await h.scheduler.start()
        await h.scheduler.wait_idle()
        assert h.scheduler.running is True

        h.probe.script = [ProbeResult.found(_SHOT)]
        report = await h.scheduler.run_once()

        assert report.delivered is True
        assert h.scheduler.running is False
        assert h.scheduler.timer_armed is False


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------


class TestConfigErrors:
    async def test_config_error_keeps_idle(self, make_harness: Callable[..., Harness]) -> None:
        h = make_harness()
        h.config_error = ConfigError("SEARCH_KANA_NAME is not set")

        with pytest.raises(ConfigError, match="SEARCH_KANA_NAME"):
            await h.scheduler.start()

        assert h.scheduler.running is False
        assert h.scheduler.timer_armed is False
        assert h.probe.calls == []

    async def test_other_loader_errors_are_wrapped(
        self, make_harness: Callable[..., Harness]
    ) -> None:
        h = make_harness()
        h.config_error = KeyError("kana_name")

        with pytest.raises(ConfigError, match="Could not load"):
            await h.scheduler.start()

        assert h.scheduler.running is False

    async def test_run_once_propagates_config_error(
        self, make_harness: Callable[..., Harness]
    ) -> None:
        h = make_harness()
        h.config_error = ConfigError("bad")

        with pytest.raises(ConfigError):
            await h.scheduler.run_once()

        assert h.scheduler.status().total_checks == 0


# ---------------------------------------------------------------------------
# In-flight cycles and manual checks
# ---------------------------------------------------------------------------


class TestInFlight:
    async def test_stop_does_not_cancel_in_flight_check(
        self, make_harness: Callable[..., Harness]
    ) -> None:
        h = make_harness(_gated())
        await h.scheduler.start()
        await asyncio.wait_for(h.probe.entered.wait(), timeout=1.0)

        await h.scheduler.stop()
        assert h.scheduler.running is False
        assert h.scheduler.check_in_progress is True

        assert h.probe.gate is not None
        h.probe.gate.set()
        await h.scheduler.wait_idle()

        assert h.scheduler.status().total_checks == 1
        assert len(await h.log_store.list()) == 1
        assert h.scheduler.running is False

    async def test_run_once_leaves_idle_state(self, make_harness: Callable[..., Harness]) -> None:
        h = make_harness()

        report = await h.scheduler.run_once()

        assert report.outcome is ProbeOutcome.NOT_FOUND
        assert h.scheduler.running is False
        assert h.scheduler.timer_armed is False
        assert h.scheduler.status().total_checks == 1

    async def test_check_with_config_uses_given_params(
        self, make_harness: Callable[..., Harness]
    ) -> None:
        h = make_harness()
        custom = ScheduleConfig(
            criteria=SearchCriteria(kana_name="ハイツ"),
            interval_seconds=999.0,
            headless=False,
        )

        await h.scheduler.check_with_config(custom)

        assert h.config_loader_calls == 0
        assert h.probe.calls == [(custom.criteria, False)]

    async def test_late_subscriber_receives_backfill(
        self, make_harness: Callable[..., Harness]
    ) -> None:
        h = make_harness()
        await h.scheduler.run_once()
        await h.scheduler.run_once()

        events = h.broadcaster.subscribe().drain()

        assert isinstance(events[0], StatusUpdateEvent)
        assert events[0].status.total_checks == 2
        assert [type(e) for e in events[1:]] == [LogAddedEvent, LogAddedEvent]
