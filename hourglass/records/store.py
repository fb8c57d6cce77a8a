"""Execution record store contract."""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from datetime import datetime

from hourglass.records.models import DispatchMode, ExecutionRecord, ExecutionStatus


class ExecutionRecordStore(ABC):
    """Abstract durable ledger of the latest run per (activity, site).

    Every mutating method is atomic per key. Implementations raise
    :class:`~hourglass.records.models.StoreUnavailableError` when the backend
    cannot be reached and
    :class:`~hourglass.records.models.IllegalTransitionError` for status
    changes the lifecycle does not allow.
    """

    @abstractmethod
    async def get(self, activity_key: str, site_id: str) -> ExecutionRecord | None:
        """Return the record for the key, or None when it was never written."""

    @abstractmethod
    async def claim(
        self,
        activity_key: str,
        site_id: str,
        *,
        now: datetime,
        mode: DispatchMode = DispatchMode.NORMAL,
        run_id: str | None = None,
    ) -> ExecutionRecord | None:
        """Move the key to RUNNING unless another writer already holds it.

        Returns the RUNNING record with a fresh ``run_token``, or None when the
        current record is RUNNING.
        """

    @abstractmethod
    async def mark_pending(
        self,
        activity_key: str,
        site_id: str,
        *,
        now: datetime,
        next_run_at: datetime | None,
    ) -> ExecutionRecord | None:
        """Record a deferred run; returns None when the key is RUNNING."""

    @abstractmethod
    async def attach_run_id(
        self,
        activity_key: str,
        site_id: str,
        run_id: str,
        *,
        now: datetime,
    ) -> ExecutionRecord | None:
        """Store the runtime's run id on a RUNNING record; None when not RUNNING."""

    @abstractmethod
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
        """Move a RUNNING record to COMPLETED or FAILED.

        With ``run_token`` the record must still carry the token its claim
        issued; otherwise :class:`~hourglass.records.models.StaleRunError` is raised.
        """

    @abstractmethod
    async def reclaim_stale(
        self,
        activity_key: str,
        site_id: str,
        *,
        now: datetime,
        stale_before: datetime,
        error_message: str,
    ) -> ExecutionRecord | None:
        """Move a RUNNING record last written before ``stale_before`` to FAILED.

        Returns the FAILED record, or None when the record is not (or no
        longer) RUNNING or is not stale. Concurrent callers reclaim at most once.
        """

    @abstractmethod
    async def list_records(
        self,
        *,
        status: ExecutionStatus | None = None,
        activity_key: str | None = None,
        limit: int | None = None,
    ) -> list[ExecutionRecord]:
        """List records ordered by most recent update first."""

    @abstractmethod
    async def list_running(
        self,
        *,
        updated_before: datetime | None = None,
    ) -> list[ExecutionRecord]:
        """List RUNNING records, optionally only those last written before a cutoff."""


def finished_record(
    record: ExecutionRecord,
    status: ExecutionStatus,
    *,
    now: datetime,
    error_message: str | None = None,
) -> ExecutionRecord:
    """Apply terminal bookkeeping shared by every backend."""
    if status is ExecutionStatus.COMPLETED:
        return record.evolve(
            status=status,
            last_run_at=now,
            retry_count=0,
            error_message=None,
            updated_at=now,
        )
    return record.evolve(
        status=status,
        last_run_at=now,
        retry_count=record.retry_count + 1,
        error_message=error_message,
        updated_at=now,
    )


def new_run_token() -> str:
    return uuid.uuid4().hex
