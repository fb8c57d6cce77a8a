"""Integration tests for SQLExecutionRecordStore against PostgreSQL."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import delete

from hourglass.db import Base, create_engine, create_session_factory
from hourglass.records.models import DispatchMode, ExecutionStatus, IllegalTransitionError, StaleRunError
from hourglass.records.store_sql import ExecutionRecordORM, SQLExecutionRecordStore

pytestmark = pytest.mark.requires_postgres

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def sql_store(db_url: str) -> AsyncIterator[SQLExecutionRecordStore]:
    engine = create_engine(db_url, pool_size=2)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    tenant = f"test-{uuid.uuid4().hex[:12]}"
    factory = create_session_factory(engine)
    try:
        yield SQLExecutionRecordStore(factory, tenant_id=tenant)
    finally:
        async with factory() as session:
            async with session.begin():
                await session.execute(delete(ExecutionRecordORM).where(ExecutionRecordORM.tenant_id == tenant))
        await engine.dispose()


@pytest.mark.asyncio
async def test_claim_is_single_flight(sql_store: SQLExecutionRecordStore) -> None:
    results = await asyncio.gather(
        *(sql_store.claim("sync_emails", "s1", now=NOW, mode=DispatchMode.CATCH_UP) for _ in range(5))
    )
    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    assert winners[0].status is ExecutionStatus.RUNNING
    assert winners[0].mode is DispatchMode.CATCH_UP


@pytest.mark.asyncio
async def test_pending_then_claim_then_finish(sql_store: SQLExecutionRecordStore) -> None:
    later = NOW + timedelta(hours=2)
    pending = await sql_store.mark_pending("sync_emails", "s1", now=NOW, next_run_at=later)
    assert pending is not None and pending.status is ExecutionStatus.PENDING
    assert pending.next_run_at == later

    claimed = await sql_store.claim("sync_emails", "s1", now=later)
    assert claimed is not None and claimed.next_run_at is None
    assert await sql_store.mark_pending("sync_emails", "s1", now=later, next_run_at=None) is None

    done = await sql_store.finish("sync_emails", "s1", ExecutionStatus.COMPLETED, now=later)
    assert done.status is ExecutionStatus.COMPLETED
    assert done.last_run_at == later
    assert done.retry_count == 0


@pytest.mark.asyncio
async def test_finish_requires_running(sql_store: SQLExecutionRecordStore) -> None:
    with pytest.raises(IllegalTransitionError):
        await sql_store.finish("sync_emails", "missing", ExecutionStatus.COMPLETED, now=NOW)


@pytest.mark.asyncio
async def test_finish_with_replaced_token_is_refused(sql_store: SQLExecutionRecordStore) -> None:
    old = await sql_store.claim("sync_emails", "s1", now=NOW - timedelta(hours=30))
    assert old is not None and old.run_token
    await sql_store.reclaim_stale(
        "sync_emails", "s1", now=NOW, stale_before=NOW - timedelta(hours=6), error_message="stuck"
    )
    new = await sql_store.claim("sync_emails", "s1", now=NOW)
    assert new is not None and new.run_token != old.run_token

    with pytest.raises(StaleRunError):
        await sql_store.finish("sync_emails", "s1", ExecutionStatus.COMPLETED, now=NOW, run_token=old.run_token)
    current = await sql_store.get("sync_emails", "s1")
    assert current is not None and current.status is ExecutionStatus.RUNNING

    done = await sql_store.finish("sync_emails", "s1", ExecutionStatus.COMPLETED, now=NOW, run_token=new.run_token)
    assert done.status is ExecutionStatus.COMPLETED


@pytest.mark.asyncio
async def test_reclaim_stale_only_when_older_than_threshold(sql_store: SQLExecutionRecordStore) -> None:
    await sql_store.claim("deep_research", "s1", now=NOW)
    fresh = await sql_store.reclaim_stale(
        "deep_research", "s1", now=NOW, stale_before=NOW - timedelta(hours=1), error_message="stuck"
    )
    assert fresh is None

    much_later = NOW + timedelta(hours=30)
    reclaimed = await sql_store.reclaim_stale(
        "deep_research", "s1", now=much_later, stale_before=much_later - timedelta(hours=24), error_message="stuck"
    )
    assert reclaimed is not None
    assert reclaimed.status is ExecutionStatus.FAILED
    assert reclaimed.error_message == "stuck"
    assert reclaimed.retry_count == 1


@pytest.mark.asyncio
async def test_list_records_filters_by_status(sql_store: SQLExecutionRecordStore) -> None:
    await sql_store.claim("sync_emails", "s1", now=NOW)
    await sql_store.mark_pending("sync_emails", "s2", now=NOW + timedelta(minutes=1), next_run_at=None)

    running = await sql_store.list_records(status=ExecutionStatus.RUNNING)
    assert [(r.activity_key, r.site_id) for r in running] == [("sync_emails", "s1")]
    everything = await sql_store.list_records(activity_key="sync_emails")
    assert {r.site_id for r in everything} == {"s1", "s2"}
    assert len(await sql_store.list_running(updated_before=NOW + timedelta(hours=1))) == 1
