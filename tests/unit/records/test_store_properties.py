"""Property tests for execution record lifecycle invariants."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from hypothesis import given, settings
from hypothesis import strategies as st

from hourglass.records.models import ExecutionStatus, IllegalTransitionError
from hourglass.records.store_inmemory import InMemoryExecutionRecordStore

START = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

_ops = st.lists(
    st.tuples(
        st.sampled_from(["claim", "pending", "complete", "fail", "reclaim"]),
        st.integers(min_value=0, max_value=36),
    ),
    max_size=30,
)


async def _replay(ops: list[tuple[str, int]]) -> None:
    store = InMemoryExecutionRecordStore()
    status: ExecutionStatus | None = None
    retries = 0
    now = START
    for op, step_hours in ops:
        now += timedelta(hours=step_hours)
        before = await store.get("a", "s")
        if op == "claim":
            result = await store.claim("a", "s", now=now)
            if status is ExecutionStatus.RUNNING:
                assert result is None
            else:
                assert result is not None
                status = ExecutionStatus.RUNNING
        elif op == "pending":
            result = await store.mark_pending("a", "s", now=now, next_run_at=None)
            if status is ExecutionStatus.RUNNING:
                assert result is None
            else:
                assert result is not None
                status = ExecutionStatus.PENDING
        elif op in ("complete", "fail"):
            target = ExecutionStatus.COMPLETED if op == "complete" else ExecutionStatus.FAILED
            if status is ExecutionStatus.RUNNING:
                record = await store.finish("a", "s", target, now=now, error_message="boom")
                assert record.last_run_at == now
                status = target
                retries = 0 if target is ExecutionStatus.COMPLETED else retries + 1
            else:
                try:
                    await store.finish("a", "s", target, now=now)
                except IllegalTransitionError:
                    pass
                else:
                    raise AssertionError("finish accepted a non-running record")
        else:
            stale_before = now - timedelta(hours=24)
            result = await store.reclaim_stale("a", "s", now=now, stale_before=stale_before, error_message="stuck")
            stale = before is not None and before.status is ExecutionStatus.RUNNING and before.updated_at < stale_before
            assert (result is not None) == stale
            if stale:
                status = ExecutionStatus.FAILED
                retries += 1

        current = await store.get("a", "s")
        assert (current.status if current is not None else None) is status
        if current is not None:
            assert current.retry_count == retries
            if current.status is ExecutionStatus.COMPLETED:
                assert current.error_message is None


@settings(max_examples=150, deadline=None)
@given(ops=_ops)
def test_store_follows_lifecycle_model(ops: list[tuple[str, int]]) -> None:
    asyncio.run(_replay(ops))
