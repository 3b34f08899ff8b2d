"""Shared pytest fixtures and configuration for the JKK Watch test suite.

This file is loaded automatically by pytest before any test module.
It provides project-wide fixtures used across unit and integration tests:
logging setup, environment isolation, an in-memory database, scripted
probe / notifier fakes, and a fully wired watcher harness.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

import aiosqlite
import pytest
from pydantic_settings import SettingsConfigDict

from jkkwatch.core import configure_logging
from jkkwatch.core.models import (
    DeliveryResult,
    Layout,
    ProbeResult,
    ScheduleConfig,
    SearchCriteria,
    utc_now,
)
from jkkwatch.core.settings import Settings
from jkkwatch.orchestrator.broadcaster import EventBroadcaster
from jkkwatch.orchestrator.pipeline import CheckPipeline
from jkkwatch.orchestrator.scheduler import WatchScheduler
from jkkwatch.orchestrator.state import WatchState
from jkkwatch.probes.base import BaseProbe
from jkkwatch.storage.database import open_db
from jkkwatch.storage.repository import LogStore, StatusRepository

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test."""
    configure_logging(level="DEBUG", fmt="text", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove watcher-related env vars and disable ``.env`` loading.

    Keeps settings tests independent of the developer's shell and of any
    local ``.env`` file.
    """
    prefixes = (
        "TELEGRAM_",
        "SEARCH_",
        "INTERVAL_",
        "HEADLESS",
        "DATA_DIR",
        "PROBE_",
        "NOTIFY_",
        "LOG_",
        "BACKFILL_",
        "DRY_RUN",
    )
    for key in list(os.environ):
        if any(key.startswith(prefix) for prefix in prefixes):
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def criteria() -> SearchCriteria:
    return SearchCriteria(
        kana_name="コーシャハイム",
        floor_from="2",
        area_from="40㎡",
        layouts=(Layout.K2_LDK2, Layout.K3_LDK3),
    )


@pytest.fixture()
def schedule_config(criteria: SearchCriteria) -> ScheduleConfig:
    """Config with a short interval so timer behaviour is observable in tests."""
    return ScheduleConfig(criteria=criteria, interval_seconds=0.05, headless=True)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class ScriptedProbe(BaseProbe):
    """Probe that replays a script of results (or exceptions).

    Once the script is exhausted every call returns ``not_found``.  Set
    :attr:`gate` to an unset :class:`asyncio.Event` to hold calls in flight.
    """

    name = "scripted"

    def __init__(self, script: list[ProbeResult | BaseException] | None = None) -> None:
        self.script = list(script or [])
        self.calls: list[tuple[SearchCriteria, bool]] = []
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()
        self.closed = False

    async def run_search(self, criteria: SearchCriteria, headless: bool) -> ProbeResult:
        self.calls.append((criteria, headless))
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        step = self.script.pop(0) if self.script else ProbeResult.not_found()
        if isinstance(step, BaseException):
            raise step
        return step

    async def close(self) -> None:
        self.closed = True


class RecordingNotifier:
    """Notifier double that records calls and returns a fixed result."""

    def __init__(
        self,
        result: DeliveryResult | None = None,
        *,
        exc: BaseException | None = None,
        delay: float = 0.0,
    ) -> None:
        self.result = result or DeliveryResult.success(delivered_to=("1001",))
        self.exc = exc
        self.delay = delay
        self.calls: list[tuple[list[str], str, SearchCriteria | None]] = []

    async def send(
        self,
        recipients: list[str],
        artifact_ref: str,
        *,
        criteria: SearchCriteria | None = None,
    ) -> DeliveryResult:
        self.calls.append((list(recipients), artifact_ref, criteria))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        return self.result


@pytest.fixture()
def probe() -> ScriptedProbe:
    return ScriptedProbe()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@pytest.fixture()
async def db() -> AsyncIterator[aiosqlite.Connection]:
    """In-memory SQLite connection with the schema applied."""
    conn = await open_db(":memory:")
    yield conn
    await conn.close()


# ---------------------------------------------------------------------------
# Wired watcher
# ---------------------------------------------------------------------------


@dataclass
class Harness:
    """Every watcher component, wired together over an in-memory database."""

    probe: ScriptedProbe
    notifier: RecordingNotifier
    config: ScheduleConfig
    state: WatchState
    broadcaster: EventBroadcaster
    log_store: LogStore
    status_repo: StatusRepository
    pipeline: CheckPipeline
    scheduler: WatchScheduler
    config_loader_calls: int = 0
    config_error: BaseException | None = None

    def load_config(self) -> ScheduleConfig:
        self.config_loader_calls += 1
        if self.config_error is not None:
            raise self.config_error
        return self.config


@pytest.fixture()
async def make_harness(
    db: aiosqlite.Connection,
    schedule_config: ScheduleConfig,
) -> AsyncIterator[Callable[..., Harness]]:
    """Factory building a :class:`Harness`; every scheduler is shut down after the test."""
    built: list[Harness] = []

    def _make(
        probe: ScriptedProbe | None = None,
        notifier: RecordingNotifier | None = None,
        *,
        config: ScheduleConfig | None = None,
        recipients: tuple[str, ...] = ("1001", "1002"),
        probe_timeout_s: float = 5.0,
        notify_timeout_s: float = 5.0,
        backfill_size: int = 100,
        clock: Callable[[], datetime] = utc_now,
        retention: timedelta = timedelta(hours=24),
    ) -> Harness:
        probe = probe or ScriptedProbe()
        notifier = notifier or RecordingNotifier()
        state = WatchState()
        broadcaster = EventBroadcaster(
            state.snapshot, backfill_size=backfill_size, retention=retention, clock=clock
        )
        write_lock = asyncio.Lock()
        log_store = LogStore(db, retention=retention, clock=clock, write_lock=write_lock)
        status_repo = StatusRepository(db, write_lock=write_lock)
        pipeline = CheckPipeline(
            probe=probe,
            notifier=notifier,  # type: ignore[arg-type]
            recipients=recipients,
            log_store=log_store,
            status_repo=status_repo,
            state=state,
            broadcaster=broadcaster,
            probe_timeout_s=probe_timeout_s,
            notify_timeout_s=notify_timeout_s,
            clock=clock,
        )
        harness = Harness(
            probe=probe,
            notifier=notifier,
            config=config or schedule_config,
            state=state,
            broadcaster=broadcaster,
            log_store=log_store,
            status_repo=status_repo,
            pipeline=pipeline,
            scheduler=None,  # type: ignore[arg-type]
        )
        harness.scheduler = WatchScheduler(
            pipeline=pipeline,
            state=state,
            status_repo=status_repo,
            broadcaster=broadcaster,
            config_loader=harness.load_config,
        )
        built.append(harness)
        return harness

    yield _make

    for harness in built:
        if harness.probe.gate is not None:
            harness.probe.gate.set()
        await harness.scheduler.shutdown()


# ---------------------------------------------------------------------------
# Misc helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def logger() -> logging.Logger:
    """Return a ``logging.Logger`` scoped to the running test."""
    return logging.getLogger("tests")
