"""Unit tests for HatchetActivityBridge."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from hourglass.integrations.hatchet_bridge import HatchetActivityBridge
from hourglass.integrations.dispatch import DispatchRequest
from hourglass.records.models import DispatchMode, ExecutionStatus
from hourglass.records.reaper import StuckExecutionReaper
from hourglass.records.store_inmemory import InMemoryExecutionRecordStore
from hourglass.scheduling.policies import ActivityPolicy, ActivityPolicyTable
from hourglass.scheduling.priority import PriorityTier

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _bridge(client: MagicMock, store: InMemoryExecutionRecordStore, **kwargs) -> HatchetActivityBridge:  # type: ignore[no-untyped-def]
    bridge = HatchetActivityBridge(client, store, **kwargs)
    bridge._now_cb = lambda: NOW
    return bridge


def test_bridge_validates_arguments(mock_hatchet_client: MagicMock, store: InMemoryExecutionRecordStore) -> None:
    with pytest.raises(ValueError):
        HatchetActivityBridge(mock_hatchet_client, store, retries=-1)
    with pytest.raises(ValueError):
        HatchetActivityBridge(mock_hatchet_client, store, max_concurrency=0)


@pytest.mark.asyncio
async def test_successful_run_completes_record(
    mock_hatchet_client: MagicMock, store: InMemoryExecutionRecordStore
) -> None:
    await store.claim("sync_emails", "s1", now=NOW - timedelta(minutes=5), mode=DispatchMode.CATCH_UP)
    handler = AsyncMock(return_value={"synced": 3})
    bridge = _bridge(mock_hatchet_client, store)

    out = await bridge.run_activity("sync_emails", handler, {"site_id": "s1", "mode": "catch_up"})

    handler.assert_awaited_once()
    site_id, mode, payload = handler.await_args.args
    assert (site_id, mode) == ("s1", DispatchMode.CATCH_UP)
    assert payload["site_id"] == "s1"
    assert out == {"activity_key": "sync_emails", "site_id": "s1", "result": {"synced": 3}}
    record = await store.get("sync_emails", "s1")
    assert record is not None
    assert record.status is ExecutionStatus.COMPLETED
    assert record.last_run_at == NOW


@pytest.mark.asyncio
async def test_failed_run_marks_failed_and_reraises(
    mock_hatchet_client: MagicMock, store: InMemoryExecutionRecordStore
) -> None:
    await store.claim("sync_emails", "s1", now=NOW - timedelta(minutes=5))
    handler = AsyncMock(side_effect=RuntimeError("imap timeout"))
    with pytest.raises(RuntimeError, match="imap timeout"):
        await _bridge(mock_hatchet_client, store).run_activity("sync_emails", handler, {"site_id": "s1"})
    record = await store.get("sync_emails", "s1")
    assert record is not None
    assert record.status is ExecutionStatus.FAILED
    assert record.error_message == "imap timeout"
    assert record.retry_count == 1


@pytest.mark.asyncio
async def test_completion_after_reclaim_is_ignored(
    mock_hatchet_client: MagicMock, store: InMemoryExecutionRecordStore
) -> None:
    await store.claim("sync_emails", "s1", now=NOW - timedelta(hours=30))
    await store.reclaim_stale(
        "sync_emails", "s1", now=NOW, stale_before=NOW - timedelta(hours=24), error_message="auto-reset"
    )
    out = await _bridge(mock_hatchet_client, store).run_activity("sync_emails", AsyncMock(return_value=None), {"site_id": "s1"})
    assert out["result"] == {}
    record = await store.get("sync_emails", "s1")
    assert record is not None and record.status is ExecutionStatus.FAILED


@pytest.mark.asyncio
async def test_late_completion_does_not_close_newer_run(
    mock_hatchet_client: MagicMock, store: InMemoryExecutionRecordStore
) -> None:
    stale = await store.claim("sync_emails", "s1", now=NOW - timedelta(hours=30))
    assert stale is not None
    reclaim = await StuckExecutionReaper(store).validate_and_reclaim(
        "sync_emails", "s1", timedelta(hours=6), now=NOW
    )
    assert reclaim.was_stuck and reclaim.can_proceed
    fresh = await store.claim("sync_emails", "s1", now=NOW)
    assert fresh is not None

    late_payload = DispatchRequest("sync_emails", "s1", PriorityTier.NORMAL, run_token=stale.run_token).payload()
    await _bridge(mock_hatchet_client, store).run_activity("sync_emails", AsyncMock(return_value=None), late_payload)
    record = await store.get("sync_emails", "s1")
    assert record is not None
    assert record.status is ExecutionStatus.RUNNING
    assert record.run_token == fresh.run_token

    current_payload = DispatchRequest("sync_emails", "s1", PriorityTier.NORMAL, run_token=fresh.run_token).payload()
    await _bridge(mock_hatchet_client, store).run_activity("sync_emails", AsyncMock(return_value=None), current_payload)
    record = await store.get("sync_emails", "s1")
    assert record is not None and record.status is ExecutionStatus.COMPLETED


@pytest.mark.asyncio
async def test_store_outage_does_not_fail_the_run(
    mock_hatchet_client: MagicMock, store: InMemoryExecutionRecordStore
) -> None:
    store.set_available(False)
    out = await _bridge(mock_hatchet_client, store).run_activity("sync_emails", AsyncMock(return_value=None), {"site_id": "s1"})
    assert out["site_id"] == "s1"


@pytest.mark.asyncio
async def test_input_requires_site_id(mock_hatchet_client: MagicMock, store: InMemoryExecutionRecordStore) -> None:
    bridge = _bridge(mock_hatchet_client, store)
    with pytest.raises(ValueError, match="site_id"):
        await bridge.run_activity("sync_emails", AsyncMock(), {})
    with pytest.raises(ValueError, match="dictionary"):
        await bridge.run_activity("sync_emails", AsyncMock(), ["s1"])


def test_register_activity_uses_tier_budget(mock_hatchet_client: MagicMock, store: InMemoryExecutionRecordStore) -> None:
    policies = ActivityPolicyTable([ActivityPolicy("lead_generation", priority=PriorityTier.HIGH, task_name="leadgen")])
    bridge = _bridge(mock_hatchet_client, store, policies=policies, retries=2)
    first = bridge.register_activity("lead_generation", AsyncMock())
    second = bridge.register_activity("lead_generation", AsyncMock())

    assert first is second
    mock_hatchet_client.task.assert_called_once_with(
        name="leadgen", retries=2, timeout=timedelta(minutes=5), priority=3
    )


@pytest.mark.asyncio
async def test_registered_handler_runs_activity(
    mock_hatchet_client: MagicMock, store: InMemoryExecutionRecordStore
) -> None:
    await store.claim("build_content", "s1", now=NOW - timedelta(minutes=1))
    bridge = _bridge(mock_hatchet_client, store)
    task = bridge.register_activity("build_content", AsyncMock(return_value={"ok": True}))
    out = await task({"site_id": "s1"}, None)
    assert out["result"] == {"ok": True}


@pytest.mark.asyncio
async def test_register_tick(mock_hatchet_client: MagicMock, store: InMemoryExecutionRecordStore) -> None:
    scheduler = MagicMock()
    report = MagicMock()
    report.tick_at = NOW
    report.summary.return_value = {"total_sites": 2}
    scheduler.run_tick = AsyncMock(return_value=report)

    bridge = _bridge(mock_hatchet_client, store)
    tick = bridge.register_tick(scheduler, "*/5 * * * *")
    out = await tick(None, None)

    assert out == {"tick_at": NOW.isoformat(), "total_sites": 2}
    mock_hatchet_client.task.assert_called_once_with(name="hourglass_tick", cron="*/5 * * * *", retries=0)
    with pytest.raises(ValueError):
        bridge.register_tick(scheduler, "not a cron")
