"""Business hours evaluation: is a site inside its operating window right now?

Two payload shapes are accepted for a site's hours::

    # per-day mapping
    {"monday": {"open": "09:00", "close": "18:00", "enabled": true}, ...}

    # list of named schedules (the first one is used)
    [{"name": "main", "timezone": "America/Mexico_City",
      "days": {"monday": {"start": "09:00", "end": "18:00"}}}]

Malformed day entries are dropped rather than rejected; a schedule with no
usable day counts as "no configured hours".
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

_DAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def _parse_weekday(value: Any) -> int | None:
    """Map 'Monday'/'mon'/0 to weekday index (0=Monday)."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value if 0 <= value <= 6 else None
    if not isinstance(value, str):
        return None
    name = value.strip().lower()
    for index, day in enumerate(_DAY_NAMES):
        if name == day or (len(name) == 3 and day.startswith(name)):
            return index
    return None


def parse_time(value: Any) -> time | None:
    """Parse 'HH:MM' or 'HH:MM:SS'; None when the value is not a valid time."""
    if isinstance(value, time):
        return value
    if not isinstance(value, str):
        return None
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        return None
    try:
        return time(
            int(parts[0]),
            int(parts[1]),
            int(parts[2]) if len(parts) > 2 else 0,
        )
    except ValueError:
        return None


def resolve_zone(name: str | None) -> ZoneInfo | None:
    """Return the IANA zone for ``name`` or None when it is missing or unknown."""
    if not name or not isinstance(name, str):
        return None
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return None


@dataclass(frozen=True)
class BusinessHoursWindow:
    """Open interval ``[open, close)`` on one weekday, no overnight wrap."""

    open: time
    close: time
    timezone: str | None = None
    enabled: bool = True

    def __post_init__(self) -> None:
        if self.open >= self.close:
            raise ValueError(f"window open {self.open} must be before close {self.close}")

    def contains(self, moment: time) -> bool:
        return self.open <= moment < self.close


@dataclass(frozen=True)
class WeeklySchedule:
    """Per-weekday windows for one site; weekdays use 0=Monday."""

    days: Mapping[int, BusinessHoursWindow] = field(default_factory=dict)
    timezone: str | None = None
    name: str | None = None

    def window_for(self, weekday: int) -> BusinessHoursWindow | None:
        window = self.days.get(weekday)
        if window is None or not window.enabled:
            return None
        return window

    @property
    def has_hours(self) -> bool:
        return any(w.enabled for w in self.days.values())

    def open_weekdays(self) -> list[int]:
        return sorted(day for day, w in self.days.items() if w.enabled)


def _parse_day_entry(day: Any, entry: Any) -> tuple[int, BusinessHoursWindow] | None:
    weekday = _parse_weekday(day)
    if weekday is None or not isinstance(entry, Mapping):
        logger.debug("business_hours_drop day=%r reason=unrecognized entry", day)
        return None
    if entry.get("enabled") is False:
        return None
    opens = parse_time(entry.get("open", entry.get("start")))
    closes = parse_time(entry.get("close", entry.get("end")))
    if opens is None or closes is None or opens >= closes:
        logger.debug("business_hours_drop day=%r reason=invalid times", day)
        return None
    tz_name = entry.get("timezone") or None
    if tz_name is not None and resolve_zone(tz_name) is None:
        logger.debug("business_hours_drop day=%r reason=unknown timezone %r", day, tz_name)
        return None
    return weekday, BusinessHoursWindow(open=opens, close=closes, timezone=tz_name)


def _parse_days(days: Any) -> dict[int, BusinessHoursWindow]:
    parsed: dict[int, BusinessHoursWindow] = {}
    if not isinstance(days, Mapping):
        return parsed
    for day, entry in days.items():
        item = _parse_day_entry(day, entry)
        if item is not None:
            parsed[item[0]] = item[1]
    return parsed


def parse_business_hours(payload: Any) -> WeeklySchedule | None:
    """Build a :class:`WeeklySchedule` from a site's raw hours payload.

    Returns None when the payload is empty or carries no usable window.
    Never raises.
    """
    if isinstance(payload, WeeklySchedule):
        return payload if payload.has_hours else None
    if not payload:
        return None

    if isinstance(payload, list):
        schedule = next((item for item in payload if isinstance(item, Mapping)), None)
        if schedule is None:
            return None
        payload = schedule

    if not isinstance(payload, Mapping):
        return None

    if isinstance(payload.get("days"), Mapping):
        tz_name = payload.get("timezone") if isinstance(payload.get("timezone"), str) else None
        # A schedule-level timezone is the site default, not a per-day override.
        days = _parse_days(payload["days"])
        name = payload.get("name") if isinstance(payload.get("name"), str) else None
    else:
        tz_name = None
        days = _parse_days(payload)
        name = None

    if not days:
        return None
    return WeeklySchedule(days=days, timezone=tz_name, name=name)


@dataclass(frozen=True)
class WindowState:
    """Where a site stands relative to today's window at one instant."""

    is_open_now: bool
    today_window: BusinessHoursWindow | None
    local_now: datetime
    timezone: str
    weekday: int


def evaluate_business_hours(
    schedule: WeeklySchedule | None,
    site_timezone: str | None,
    now: datetime,
    *,
    default_timezone: str | None = None,
) -> WindowState:
    """Evaluate ``schedule`` at ``now`` in the site's local time.

    The zone is the first one that resolves among the site timezone, the
    schedule's own timezone, ``default_timezone`` and UTC. The weekday is the
    site-local weekday. A window carrying its own timezone is evaluated in
    that zone. Naive ``now`` is taken as UTC.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    candidates = (site_timezone, schedule.timezone if schedule is not None else None, default_timezone)
    tz_name, zone = "UTC", ZoneInfo("UTC")
    for name in candidates:
        resolved = resolve_zone(name)
        if resolved is not None:
            tz_name, zone = str(name).strip(), resolved
            break
        if name:
            logger.debug("business_hours_timezone_skip timezone=%r", name)

    local_now = now.astimezone(zone)
    weekday = local_now.weekday()
    window = schedule.window_for(weekday) if schedule is not None else None

    if window is not None and window.timezone and window.timezone != tz_name:
        override = resolve_zone(window.timezone)
        if override is not None:
            tz_name = window.timezone
            local_now = now.astimezone(override)
            if local_now.weekday() != weekday:
                weekday = local_now.weekday()
                candidate = schedule.window_for(weekday) if schedule is not None else None
                window = candidate if candidate is not None and candidate.timezone == tz_name else None

    is_open = window is not None and window.contains(local_now.time())
    return WindowState(
        is_open_now=is_open,
        today_window=window,
        local_now=local_now,
        timezone=str(tz_name),
        weekday=weekday,
    )
