"""Stuck-execution reaper: pre-flight single-flight check with stale reclaim.

A RUNNING record older than its activity's staleness threshold is treated as
abandoned by a crashed or hung worker: it is moved to FAILED with an audit
message and the caller may proceed. The store being unavailable never blocks
scheduling (fail-open).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from hourglass.records.models import (
    ExecutionRecord,
    ExecutionStatus,
    RecordStoreError,
    StoreUnavailableError,
)
from hourglass.records.store import ExecutionRecordStore

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_THRESHOLD_HOURS = 6.0


@dataclass(frozen=True)
class ReclaimResult:
    """Outcome of :meth:`StuckExecutionReaper.validate_and_reclaim`."""

    can_proceed: bool
    was_stuck: bool = False
    cleaned: bool = False
    reason: str | None = None
    previous_status: ExecutionStatus | None = None
    hours_stuck: float | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "can_proceed": self.can_proceed,
            "was_stuck": self.was_stuck,
            "cleaned": self.cleaned,
            "reason": self.reason,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "hours_stuck": round(self.hours_stuck, 2) if self.hours_stuck is not None else None,
        }


@dataclass
class SweepResult:
    """Outcome of a bulk sweep over every RUNNING record."""

    cleaned: list[ExecutionRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def reclaim_message(hours_stuck: float, threshold_hours: float) -> str:
    return (
        f"auto-reset from stuck RUNNING after {hours_stuck:.1f}h "
        f"(threshold {threshold_hours:.1f}h)"
    )


class StuckExecutionReaper:
    """Checks and reclaims RUNNING records before a new run is dispatched."""

    def __init__(self, store: ExecutionRecordStore) -> None:
        self._store = store

    async def validate_and_reclaim(
        self,
        activity_key: str,
        site_id: str,
        staleness: timedelta,
        *,
        now: datetime,
    ) -> ReclaimResult:
        """Decide whether a new run of ``activity_key`` for ``site_id`` may start.

        Never raises for store failures: an unreachable store yields
        ``can_proceed=True`` and a warning log.
        """
        try:
            return await self._validate(activity_key, site_id, staleness, now=now, retry=True)
        except StoreUnavailableError as exc:
            logger.warning(
                "reaper_fail_open activity=%s site_id=%s error=%s",
                activity_key,
                site_id,
                exc,
            )
            return ReclaimResult(can_proceed=True, reason="store unavailable, proceeding")

    async def _validate(
        self,
        activity_key: str,
        site_id: str,
        staleness: timedelta,
        *,
        now: datetime,
        retry: bool,
    ) -> ReclaimResult:
        record = await self._store.get(activity_key, site_id)
        if record is None:
            return ReclaimResult(can_proceed=True, reason="no previous record")
        if record.status is not ExecutionStatus.RUNNING:
            return ReclaimResult(
                can_proceed=True,
                reason=f"previous status {record.status.value}",
                previous_status=record.status,
            )

        hours = record.age_hours(now)
        threshold_hours = staleness.total_seconds() / 3600.0
        if hours <= threshold_hours:
            return ReclaimResult(
                can_proceed=False,
                reason="already running",
                previous_status=ExecutionStatus.RUNNING,
                hours_stuck=hours,
            )

        message = reclaim_message(hours, threshold_hours)
        reclaimed = await self._store.reclaim_stale(
            activity_key,
            site_id,
            now=now,
            stale_before=now - staleness,
            error_message=message,
        )
        if reclaimed is None:
            # Another caller changed the record between read and reclaim.
            if retry:
                return await self._validate(activity_key, site_id, staleness, now=now, retry=False)
            return ReclaimResult(
                can_proceed=False,
                reason="record changed concurrently",
                previous_status=ExecutionStatus.RUNNING,
                hours_stuck=hours,
            )

        logger.warning(
            "reaper_reclaimed activity=%s site_id=%s hours_stuck=%.1f threshold_hours=%.1f",
            activity_key,
            site_id,
            hours,
            threshold_hours,
        )
        return ReclaimResult(
            can_proceed=True,
            was_stuck=True,
            cleaned=True,
            reason=message,
            previous_status=ExecutionStatus.RUNNING,
            hours_stuck=hours,
        )

    async def sweep(
        self,
        *,
        now: datetime,
        thresholds: Mapping[str, timedelta] | None = None,
        default_threshold: timedelta = timedelta(hours=DEFAULT_SWEEP_THRESHOLD_HOURS),
    ) -> SweepResult:
        """Reclaim every stale RUNNING record in the ledger.

        ``thresholds`` maps activity keys to their staleness threshold; other
        activities use ``default_threshold``.
        """
        thresholds = thresholds or {}
        result = SweepResult()
        shortest = min([default_threshold, *thresholds.values()])
        try:
            candidates = await self._store.list_running(updated_before=now - shortest)
        except StoreUnavailableError as exc:
            logger.warning("reaper_sweep_unavailable error=%s", exc)
            result.errors.append(str(exc))
            return result

        for record in candidates:
            threshold = thresholds.get(record.activity_key, default_threshold)
            if record.updated_at >= now - threshold:
                continue
            hours = record.age_hours(now)
            try:
                reclaimed = await self._store.reclaim_stale(
                    record.activity_key,
                    record.site_id,
                    now=now,
                    stale_before=now - threshold,
                    error_message=reclaim_message(hours, threshold.total_seconds() / 3600.0),
                )
            except RecordStoreError as exc:
                result.errors.append(f"{record.activity_key}/{record.site_id}: {exc}")
                continue
            if reclaimed is not None:
                result.cleaned.append(reclaimed)
        if result.cleaned:
            logger.warning("reaper_sweep cleaned=%d errors=%d", len(result.cleaned), len(result.errors))
        return result
