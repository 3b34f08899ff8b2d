"""Unit tests for service wiring and the process modes.

Covers:
- :func:`~jkkwatch.orchestrator.runner.open_service` refuses live mode
  without Telegram credentials, restores persisted status as Idle, seeds the
  late-joiner backfill and releases the probe on exit.
- :class:`~jkkwatch.orchestrator.runner.WatchService` log queries.
- :func:`~jkkwatch.orchestrator.runner.run_once` and
  :func:`~jkkwatch.orchestrator.runner.run_watch` with a scripted probe.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from jkkwatch.core.exceptions import ConfigError
from jkkwatch.core.models import (
    LogAddedEvent,
    ProbeOutcome,
    ProbeResult,
    StatusUpdateEvent,
    WatchStatus,
)
from jkkwatch.core.run_context import RunContext
from jkkwatch.core.settings import Settings
from jkkwatch.orchestrator import runner
from jkkwatch.orchestrator.runner import open_service, run_once, run_watch
from jkkwatch.storage.database import open_db
from jkkwatch.storage.repository import StatusRepository

from conftest import ScriptedProbe

_SHOT = "/data/screenshots/property_20261016_120000.png"

pytestmark = pytest.mark.usefixtures("clean_env")


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        search_kana_name="コーシャハイム",
        telegram_chat_ids=["1001"],
        data_dir=str(tmp_path / "data"),
        interval_seconds=60,
    )


@pytest.fixture()
def dry_run() -> RunContext:
    return RunContext(dry_run=True)


def _use_probe(monkeypatch: pytest.MonkeyPatch, probe: ScriptedProbe) -> None:
    monkeypatch.setattr(runner, "JkkVacancyProbe", lambda _artifacts_dir: probe)


# ---------------------------------------------------------------------------
# open_service
# ---------------------------------------------------------------------------


class TestOpenService:
    async def test_live_mode_requires_telegram(self, settings: Settings) -> None:
        with pytest.raises(ConfigError, match="TELEGRAM_BOT_TOKEN"):
            async with open_service(settings, RunContext()):
                pass
        assert not settings.database_path.exists()

    async def test_run_once_and_logs(
        self, settings: Settings, dry_run: RunContext, probe: ScriptedProbe
    ) -> None:
        async with open_service(settings, dry_run, probe=probe) as service:
            assert service.status() == WatchStatus()

            report = await service.run_once()
            entries = await service.logs()

        assert report.outcome is ProbeOutcome.NOT_FOUND
        assert len(entries) == 1
        assert settings.database_path.exists()
        assert probe.closed is True

    async def test_clear_logs_resets_backfill(
        self, settings: Settings, dry_run: RunContext, probe: ScriptedProbe
    ) -> None:
        async with open_service(settings, dry_run, probe=probe) as service:
            await service.run_once()

            await service.clear_logs()

            assert await service.logs() == []
            events = service.subscribe().drain()
            assert len(events) == 1
            assert isinstance(events[0], StatusUpdateEvent)

    async def test_restart_restores_status_as_idle(
        self, settings: Settings, dry_run: RunContext, probe: ScriptedProbe
    ) -> None:
        conn = await open_db(settings.database_path)
        await StatusRepository(conn).save(
            WatchStatus(running=True, last_result="Searching (no hits)...", total_checks=5)
        )
        await conn.close()

        async with open_service(settings, dry_run, probe=probe) as service:
            status = service.status()

        assert status.running is False
        assert status.total_checks == 5
        assert status.last_result == "Searching (no hits)..."

    async def test_backfill_seeded_from_log_store(
        self, settings: Settings, dry_run: RunContext
    ) -> None:
        async with open_service(settings, dry_run, probe=ScriptedProbe()) as service:
            await service.run_once()
            await service.run_once()

        async with open_service(settings, dry_run, probe=ScriptedProbe()) as service:
            events = service.subscribe().drain()

        assert isinstance(events[0], StatusUpdateEvent)
        assert events[0].status.total_checks == 2
        logs = [e for e in events if isinstance(e, LogAddedEvent)]
        assert len(logs) == 2
        assert logs[0].entry.timestamp <= logs[1].entry.timestamp

    async def test_exit_stops_running_watch(
        self, settings: Settings, dry_run: RunContext, probe: ScriptedProbe
    ) -> None:
        async with open_service(settings, dry_run, probe=probe) as service:
            await service.start()
            assert service.status().running is True

        conn = await open_db(settings.database_path)
        persisted = await StatusRepository(conn).load()
        await conn.close()
        assert persisted is not None
        assert persisted.running is False


# ---------------------------------------------------------------------------
# Process modes
# ---------------------------------------------------------------------------


class TestProcessModes:
    async def test_run_once(
        self, settings: Settings, dry_run: RunContext, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        probe = ScriptedProbe()
        _use_probe(monkeypatch, probe)

        report = await run_once(dry_run, settings)

        assert report.outcome is ProbeOutcome.NOT_FOUND
        assert len(probe.calls) == 1

    async def test_run_once_without_search_name(
        self, tmp_path: Path, dry_run: RunContext, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _use_probe(monkeypatch, ScriptedProbe())
        incomplete = Settings(telegram_chat_ids=["1001"], data_dir=str(tmp_path))

        with pytest.raises(ConfigError):
            await run_once(dry_run, incomplete)

    async def test_run_watch_returns_after_auto_stop(
        self, settings: Settings, dry_run: RunContext, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        probe = ScriptedProbe([ProbeResult.found(_SHOT)])
        _use_probe(monkeypatch, probe)

        final = await run_watch(dry_run, settings)

        assert final.running is False
        assert final.total_checks == 1
        assert final.last_result is not None
        assert "Notification sent" in final.last_result
