"""Execution record ledger and stuck-execution reaper."""

from hourglass.records.models import (
    GLOBAL_SITE_ID,
    DispatchMode,
    ExecutionRecord,
    ExecutionStatus,
    IllegalTransitionError,
    RecordStoreError,
    StaleRunError,
    StoreUnavailableError,
    can_transition,
)
from hourglass.records.reaper import ReclaimResult, StuckExecutionReaper, SweepResult
from hourglass.records.store import ExecutionRecordStore
from hourglass.records.store_inmemory import InMemoryExecutionRecordStore

__all__ = [
    "GLOBAL_SITE_ID",
    "DispatchMode",
    "ExecutionRecord",
    "ExecutionRecordStore",
    "ExecutionStatus",
    "IllegalTransitionError",
    "InMemoryExecutionRecordStore",
    "RecordStoreError",
    "ReclaimResult",
    "StaleRunError",
    "StoreUnavailableError",
    "StuckExecutionReaper",
    "SweepResult",
    "can_transition",
]
