"""Unit tests for FleetHealthCheck."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from hourglass.records.models import ExecutionStatus
from hourglass.records.store_inmemory import InMemoryExecutionRecordStore
from hourglass.scheduling.health import FleetHealthCheck
from hourglass.scheduling.policies import ActivityPolicy, ActivityPolicyTable

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_empty_ledger_is_healthy(store: InMemoryExecutionRecordStore) -> None:
    report = await FleetHealthCheck(store).check(NOW)
    assert report.status == "healthy"
    assert report.issues == 0
    assert report.recommendations == []


@pytest.mark.asyncio
async def test_classifies_records(store: InMemoryExecutionRecordStore) -> None:
    policies = ActivityPolicyTable([ActivityPolicy("sync_emails", staleness_hours=6)])
    # stuck: RUNNING past its 6h threshold
    await store.claim("sync_emails", "stuck", now=NOW - timedelta(hours=7))
    # long running: RUNNING for 3h, under threshold
    await store.claim("sync_emails", "slow", now=NOW - timedelta(hours=3))
    # fresh RUNNING is not an issue
    await store.claim("sync_emails", "fresh", now=NOW - timedelta(minutes=10))
    # overdue: completed two days ago
    await store.claim("sync_emails", "old", now=NOW - timedelta(hours=49))
    await store.finish("sync_emails", "old", ExecutionStatus.COMPLETED, now=NOW - timedelta(hours=48))

    report = await FleetHealthCheck(store, policies).check(NOW)
    assert [r.site_id for r in report.stuck] == ["stuck"]
    assert [r.site_id for r in report.long_running] == ["slow"]
    assert [r.site_id for r in report.overdue] == ["old"]
    assert report.failed == []
    assert report.status == "degraded"
    assert any("records reap" in line for line in report.recommendations)
    assert report.to_dict()["stuck"] == 1


@pytest.mark.asyncio
async def test_failed_record_needs_attention(store: InMemoryExecutionRecordStore) -> None:
    await store.claim("sync_emails", "s1", now=NOW - timedelta(hours=1))
    await store.finish("sync_emails", "s1", ExecutionStatus.FAILED, now=NOW, error_message="boom")
    report = await FleetHealthCheck(store).check(NOW)
    assert len(report.failed) == 1
    assert report.needs_attention is True
    assert report.status == "unhealthy"
