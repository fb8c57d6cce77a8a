"""In-memory execution record store for Lite Mode, dry runs and tests.

Same public interface as :class:`~hourglass.records.store_sql.SQLExecutionRecordStore`.
Records are lost on process exit.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from hourglass.records.models import (
    DispatchMode,
    ExecutionRecord,
    ExecutionStatus,
    IllegalTransitionError,
    StaleRunError,
    StoreUnavailableError,
    check_transition,
)
from hourglass.records.store import ExecutionRecordStore, finished_record, new_run_token

logger = logging.getLogger(__name__)


class InMemoryExecutionRecordStore(ExecutionRecordStore):
    """Dict-backed store; a single asyncio lock makes every operation atomic."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], ExecutionRecord] = {}
        self._lock = asyncio.Lock()
        self._available = True

    def set_available(self, available: bool) -> None:
        """Simulate a backend outage (tests and chaos drills)."""
        self._available = available

    def _ensure_available(self) -> None:
        if not self._available:
            raise StoreUnavailableError("in-memory store marked unavailable")

    async def get(self, activity_key: str, site_id: str) -> ExecutionRecord | None:
        self._ensure_available()
        return self._records.get((activity_key, site_id))

    async def claim(
        self,
        activity_key: str,
        site_id: str,
        *,
        now: datetime,
        mode: DispatchMode = DispatchMode.NORMAL,
        run_id: str | None = None,
    ) -> ExecutionRecord | None:
        self._ensure_available()
        async with self._lock:
            current = self._records.get((activity_key, site_id))
            if current is not None and current.status is ExecutionStatus.RUNNING:
                return None
            check_transition(
                activity_key,
                site_id,
                current.status if current is not None else None,
                ExecutionStatus.RUNNING,
            )
            if current is None:
                record = ExecutionRecord(
                    activity_key=activity_key,
                    site_id=site_id,
                    status=ExecutionStatus.RUNNING,
                    updated_at=now,
                    created_at=now,
                    mode=mode,
                    run_id=run_id,
                    run_token=new_run_token(),
                )
            else:
                record = current.evolve(
                    status=ExecutionStatus.RUNNING,
                    updated_at=now,
                    next_run_at=None,
                    error_message=None,
                    mode=mode,
                    run_id=run_id,
                    run_token=new_run_token(),
                )
            self._records[record.key] = record
            return record

    async def mark_pending(
        self,
        activity_key: str,
        site_id: str,
        *,
        now: datetime,
        next_run_at: datetime | None,
    ) -> ExecutionRecord | None:
        self._ensure_available()
        async with self._lock:
            current = self._records.get((activity_key, site_id))
            if current is not None and current.status is ExecutionStatus.RUNNING:
                return None
            if current is None:
                record = ExecutionRecord(
                    activity_key=activity_key,
                    site_id=site_id,
                    status=ExecutionStatus.PENDING,
                    updated_at=now,
                    created_at=now,
                    next_run_at=next_run_at,
                )
            else:
                record = current.evolve(
                    status=ExecutionStatus.PENDING,
                    updated_at=now,
                    next_run_at=next_run_at,
                )
            self._records[record.key] = record
            return record

    async def attach_run_id(
        self,
        activity_key: str,
        site_id: str,
        run_id: str,
        *,
        now: datetime,
    ) -> ExecutionRecord | None:
        self._ensure_available()
        async with self._lock:
            current = self._records.get((activity_key, site_id))
            if current is None or current.status is not ExecutionStatus.RUNNING:
                return None
            record = current.evolve(run_id=run_id, updated_at=now)
            self._records[record.key] = record
            return record

    async def finish(
        self,
        activity_key: str,
        site_id: str,
        status: ExecutionStatus,
        *,
        now: datetime,
        error_message: str | None = None,
        run_token: str | None = None,
    ) -> ExecutionRecord:
        self._ensure_available()
        async with self._lock:
            current = self._records.get((activity_key, site_id))
            check_transition(
                activity_key,
                site_id,
                current.status if current is not None else None,
                status,
            )
            if current is None:
                raise IllegalTransitionError(activity_key, site_id, None, status)
            if run_token is not None and current.run_token != run_token:
                raise StaleRunError(activity_key, site_id, status)
            record = finished_record(current, status, now=now, error_message=error_message)
            self._records[record.key] = record
            return record

    async def reclaim_stale(
        self,
        activity_key: str,
        site_id: str,
        *,
        now: datetime,
        stale_before: datetime,
        error_message: str,
    ) -> ExecutionRecord | None:
        self._ensure_available()
        async with self._lock:
            current = self._records.get((activity_key, site_id))
            if current is None or current.status is not ExecutionStatus.RUNNING:
                return None
            if current.updated_at >= stale_before:
                return None
            record = finished_record(
                current,
                ExecutionStatus.FAILED,
                now=now,
                error_message=error_message,
            )
            self._records[record.key] = record
            logger.debug("record_reclaimed activity=%s site_id=%s", activity_key, site_id)
            return record

    async def list_records(
        self,
        *,
        status: ExecutionStatus | None = None,
        activity_key: str | None = None,
        limit: int | None = None,
    ) -> list[ExecutionRecord]:
        self._ensure_available()
        rows = [
            r
            for r in self._records.values()
            if (status is None or r.status is status)
            and (activity_key is None or r.activity_key == activity_key)
        ]
        rows.sort(key=lambda r: r.updated_at, reverse=True)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def list_running(
        self,
        *,
        updated_before: datetime | None = None,
    ) -> list[ExecutionRecord]:
        self._ensure_available()
        return [
            r
            for r in self._records.values()
            if r.status is ExecutionStatus.RUNNING
            and (updated_before is None or r.updated_at < updated_before)
        ]
