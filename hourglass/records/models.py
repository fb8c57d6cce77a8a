"""Execution record types and the status lifecycle shared by every store backend."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum

GLOBAL_SITE_ID = "global"


class RecordStoreError(Exception):
    """Base exception for execution record store operations."""


class StoreUnavailableError(RecordStoreError):
    """Raised when the backing store cannot be reached or fails mid-operation."""


class IllegalTransitionError(RecordStoreError):
    """Raised when a status change is not permitted by the record lifecycle."""

    def __init__(
        self,
        activity_key: str,
        site_id: str,
        current: ExecutionStatus | None,
        target: ExecutionStatus,
    ) -> None:
        self.activity_key = activity_key
        self.site_id = site_id
        self.current = current
        self.target = target
        source = current.value if current is not None else "absent"
        super().__init__(
            f"Illegal transition for {activity_key}/{site_id}: {source} -> {target.value}"
        )


class StaleRunError(IllegalTransitionError):
    """Raised when a run reports an outcome for a claim that has since been replaced."""

    def __init__(self, activity_key: str, site_id: str, target: ExecutionStatus) -> None:
        super().__init__(activity_key, site_id, ExecutionStatus.RUNNING, target)
        self.args = (f"Stale run for {activity_key}/{site_id}: record was claimed again",)


class ExecutionStatus(str, Enum):
    """Lifecycle status of the most recent run of an (activity, site) pair."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)


class DispatchMode(str, Enum):
    """How a runnable decision was handed to the execution runtime."""

    NORMAL = "normal"
    CATCH_UP = "catch_up"


_ALLOWED_TRANSITIONS: dict[ExecutionStatus | None, frozenset[ExecutionStatus]] = {
    None: frozenset({ExecutionStatus.PENDING, ExecutionStatus.RUNNING}),
    ExecutionStatus.PENDING: frozenset({ExecutionStatus.PENDING, ExecutionStatus.RUNNING}),
    ExecutionStatus.RUNNING: frozenset({ExecutionStatus.COMPLETED, ExecutionStatus.FAILED}),
    ExecutionStatus.COMPLETED: frozenset({ExecutionStatus.PENDING, ExecutionStatus.RUNNING}),
    ExecutionStatus.FAILED: frozenset({ExecutionStatus.PENDING, ExecutionStatus.RUNNING}),
}


def can_transition(current: ExecutionStatus | None, target: ExecutionStatus) -> bool:
    """Return True when ``current -> target`` is a legal lifecycle step.

    ``current`` is None for a key that has no record yet.
    """
    return target in _ALLOWED_TRANSITIONS[current]


def check_transition(
    activity_key: str,
    site_id: str,
    current: ExecutionStatus | None,
    target: ExecutionStatus,
) -> None:
    """Raise :class:`IllegalTransitionError` unless the transition is legal."""
    if not can_transition(current, target):
        raise IllegalTransitionError(activity_key, site_id, current, target)


@dataclass(frozen=True)
class ExecutionRecord:
    """Latest-run state for one (activity, site) pair.

    Records are overwritten in place on every run and never deleted.
    """

    activity_key: str
    site_id: str
    status: ExecutionStatus
    updated_at: datetime
    created_at: datetime
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    retry_count: int = 0
    error_message: str | None = None
    run_id: str | None = None
    mode: DispatchMode | None = None
    run_token: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.activity_key, self.site_id)

    def age_hours(self, now: datetime) -> float:
        """Hours since the record was last written."""
        return (now - self.updated_at).total_seconds() / 3600.0

    def evolve(self, **changes: object) -> ExecutionRecord:
        return replace(self, **changes)  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, object]:
        return {
            "activity_key": self.activity_key,
            "site_id": self.site_id,
            "status": self.status.value,
            "last_run_at": _iso(self.last_run_at),
            "next_run_at": _iso(self.next_run_at),
            "retry_count": self.retry_count,
            "error_message": self.error_message,
            "run_id": self.run_id,
            "mode": self.mode.value if self.mode is not None else None,
            "updated_at": _iso(self.updated_at),
            "created_at": _iso(self.created_at),
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
