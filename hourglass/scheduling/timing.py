"""Timing decision engine: turn a site's window state into what to do now."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from enum import Enum

from hourglass.scheduling.business_hours import WindowState

REASON_PAST_CATCH_UP = "past catch-up window"
REASON_PAST_FALLBACK = "past fallback window"
REASON_WEEKEND_NO_FALLBACK = "no business hours and weekend, no fallback"
REASON_CLOSED_TODAY = "closed today"


class DecisionKind(str, Enum):
    """Kinds of timing decision."""

    EXECUTE_NOW = "execute_now"
    CATCH_UP = "catch_up"
    SCHEDULE_LATER = "schedule_later"
    SKIP = "skip"


@dataclass(frozen=True)
class TimingDecision:
    """Result of evaluating one (activity, site) pair at one instant."""

    kind: DecisionKind
    at: datetime | None = None
    reason: str | None = None

    @classmethod
    def execute_now(cls) -> TimingDecision:
        return cls(DecisionKind.EXECUTE_NOW)

    @classmethod
    def catch_up(cls) -> TimingDecision:
        return cls(DecisionKind.CATCH_UP)

    @classmethod
    def schedule_later(cls, at: datetime) -> TimingDecision:
        return cls(DecisionKind.SCHEDULE_LATER, at=at)

    @classmethod
    def skip(cls, reason: str) -> TimingDecision:
        return cls(DecisionKind.SKIP, reason=reason)

    @property
    def runnable(self) -> bool:
        return self.kind in (DecisionKind.EXECUTE_NOW, DecisionKind.CATCH_UP)

    def to_dict(self) -> dict[str, str | None]:
        return {
            "kind": self.kind.value,
            "at": self.at.isoformat() if self.at is not None else None,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class FallbackPolicy:
    """Default window for sites without business hours.

    ``weekdays`` use 0=Monday and are matched against the site-local day.
    ``apply_to_closed_days`` extends the fallback to sites that have hours
    configured but none for today.
    """

    weekdays: tuple[int, ...] = (0, 1, 2, 3, 4)
    start: time = time(8, 0)
    end: time = time(16, 0)
    apply_to_closed_days: bool = False

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError("fallback start must be before end")
        if any(day < 0 or day > 6 for day in self.weekdays):
            raise ValueError("fallback weekdays must be within 0..6")

    @classmethod
    def from_values(
        cls,
        *,
        weekdays: Iterable[int] | None = None,
        start: time | None = None,
        end: time | None = None,
        apply_to_closed_days: bool = False,
    ) -> FallbackPolicy:
        return cls(
            weekdays=tuple(weekdays) if weekdays is not None else (0, 1, 2, 3, 4),
            start=start or time(8, 0),
            end=end or time(16, 0),
            apply_to_closed_days=apply_to_closed_days,
        )


DEFAULT_FALLBACK = FallbackPolicy()


def _at_local(local_now: datetime, moment: time) -> datetime:
    return datetime.combine(local_now.date(), moment, tzinfo=local_now.tzinfo)


def _decide_fallback(state: WindowState, fallback: FallbackPolicy) -> TimingDecision:
    if state.weekday not in fallback.weekdays:
        return TimingDecision.skip(REASON_WEEKEND_NO_FALLBACK)
    current = state.local_now.time()
    if fallback.start <= current < fallback.end:
        return TimingDecision.execute_now()
    if current < fallback.start:
        return TimingDecision.schedule_later(_at_local(state.local_now, fallback.start))
    return TimingDecision.skip(REASON_PAST_FALLBACK)


def decide_timing(
    state: WindowState,
    *,
    has_configured_hours: bool,
    catch_up_hours: float = 4.0,
    fallback: FallbackPolicy = DEFAULT_FALLBACK,
) -> TimingDecision:
    """Decide what to do for one site at the instant ``state`` describes.

    Pure: the same inputs always give the same decision.
    """
    window = state.today_window
    if window is None:
        if has_configured_hours and not fallback.apply_to_closed_days:
            return TimingDecision.skip(REASON_CLOSED_TODAY)
        return _decide_fallback(state, fallback)

    if state.is_open_now:
        return TimingDecision.execute_now()

    local_now = state.local_now
    if local_now.time() < window.open:
        return TimingDecision.schedule_later(_at_local(local_now, window.open))

    closed_at = _at_local(local_now, window.close)
    if closed_at <= local_now <= closed_at + timedelta(hours=max(0.0, catch_up_hours)):
        return TimingDecision.catch_up()
    return TimingDecision.skip(REASON_PAST_CATCH_UP)
