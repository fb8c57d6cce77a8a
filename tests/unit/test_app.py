"""Unit tests for the Hourglass application facade."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from hourglass import Hourglass
from hourglass.config import ConfigManager, HourglassConfig
from hourglass.integrations.dispatch import HatchetDispatcher, RecordingDispatcher
from hourglass.records.models import ExecutionStatus
from hourglass.records.store_inmemory import InMemoryExecutionRecordStore
from hourglass.records.store_sql import SQLExecutionRecordStore
from hourglass.sites.directory import StaticSiteDirectory, YAMLSiteDirectory

# Tuesday 10:00 in Mexico City
NOW = datetime(2026, 3, 10, 16, 0, tzinfo=timezone.utc)


def test_defaults_to_in_memory_store_and_recording_dispatcher() -> None:
    app = Hourglass(HourglassConfig())
    assert isinstance(app.store, InMemoryExecutionRecordStore)
    assert isinstance(app.dispatcher, RecordingDispatcher)
    assert isinstance(app.directory, YAMLSiteDirectory)
    assert app.scheduler.store is app.store


def test_database_url_selects_sql_store() -> None:
    config = HourglassConfig.model_validate({"database": {"url": "postgresql+asyncpg://u:p@localhost:5432/hg"}})
    app = Hourglass(config)
    assert isinstance(app.store, SQLExecutionRecordStore)


def test_hatchet_enabled_selects_hatchet_dispatcher(monkeypatch: pytest.MonkeyPatch) -> None:
    config = HourglassConfig.model_validate({"hatchet": {"enabled": True, "api_token": "t"}})
    connect = MagicMock()
    monkeypatch.setattr("hourglass.integrations.hatchet.HatchetClient.connect", connect)
    app = Hourglass(config, directory=StaticSiteDirectory())
    assert isinstance(app.dispatcher, HatchetDispatcher)
    connect.assert_called_once()


@pytest.mark.asyncio
async def test_run_tick_reap_and_health(site_payloads: list[dict]) -> None:
    store = InMemoryExecutionRecordStore()
    app = Hourglass(HourglassConfig(), directory=StaticSiteDirectory(site_payloads), store=store)

    report = await app.run_tick(NOW)
    assert report.total_sites == 2
    assert report.dispatched
    assert all(o.site_id == "mx-centro" or o.site_id == "global" for o in report.dispatched)

    later = NOW + timedelta(hours=30)
    swept = await app.reap(later)
    assert swept.cleaned
    assert all(r.status is ExecutionStatus.FAILED for r in swept.cleaned)

    health = await app.health(later)
    assert health.failed
    assert health.status == "unhealthy"
    await app.close()


def test_from_config_file_registers_reload(tmp_path: Path) -> None:
    cfg_path = tmp_path / "hourglass.yaml"
    cfg_path.write_text("scheduling:\n  max_concurrency: 3\n", encoding="utf-8")
    app = Hourglass.from_config_file(str(cfg_path), directory=StaticSiteDirectory())
    assert app.scheduler.max_concurrency == 3

    cfg_path.write_text("scheduling:\n  max_concurrency: 9\n", encoding="utf-8")
    ConfigManager.instance().reload()
    assert app.scheduler.max_concurrency == 9


def test_worker_registers_activities_and_tick(mock_hatchet_client: MagicMock) -> None:
    app = Hourglass(HourglassConfig(), directory=StaticSiteDirectory())
    app._hatchet_client = mock_hatchet_client
    bridge = app.worker({"sync_emails": AsyncMock()})
    names = [call.kwargs["name"] for call in mock_hatchet_client.task.call_args_list]
    assert names == ["sync_emails", "hourglass_tick"]
    assert bridge.store is app.store
