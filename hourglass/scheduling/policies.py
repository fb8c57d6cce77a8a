"""Per-activity scheduling policy table."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import timedelta
from enum import Enum
from typing import Any

from hourglass.scheduling.priority import PriorityTier


class ActivityScope(str, Enum):
    """Whether an activity runs per site or once for the whole fleet."""

    SITE = "site"
    GLOBAL = "global"


@dataclass(frozen=True)
class ActivityPolicy:
    """Scheduling knobs for one activity type."""

    key: str
    scope: ActivityScope = ActivityScope.SITE
    enabled: bool = True
    catch_up_hours: float = 4.0
    staleness_hours: float = 24.0
    min_interval_hours: float | None = None
    priority: PriorityTier | None = None
    task_name: str | None = None

    def __post_init__(self) -> None:
        if not self.key or not self.key.strip():
            raise ValueError("activity key must be a non-empty string")
        if self.staleness_hours <= 0:
            raise ValueError(f"staleness_hours must be positive for {self.key}")
        if self.catch_up_hours < 0:
            raise ValueError(f"catch_up_hours must be >= 0 for {self.key}")

    @property
    def staleness(self) -> timedelta:
        return timedelta(hours=self.staleness_hours)

    @property
    def min_interval(self) -> timedelta | None:
        if self.min_interval_hours is None or self.min_interval_hours <= 0:
            return None
        return timedelta(hours=self.min_interval_hours)

    @property
    def runtime_task(self) -> str:
        """Name of the runtime task that performs this activity."""
        return self.task_name or self.key

    def merged(self, updates: Mapping[str, Any]) -> ActivityPolicy:
        """Return a copy with the non-None ``updates`` applied."""
        changes = {k: v for k, v in updates.items() if v is not None and k != "key"}
        if "scope" in changes:
            changes["scope"] = ActivityScope(changes["scope"])
        if "priority" in changes:
            changes["priority"] = PriorityTier.parse(changes["priority"])
        return replace(self, **changes)


DEFAULT_ACTIVITY_POLICIES: tuple[ActivityPolicy, ...] = (
    ActivityPolicy("daily_stand_up", staleness_hours=24, min_interval_hours=20),
    ActivityPolicy("daily_prospection", staleness_hours=24, min_interval_hours=20),
    ActivityPolicy("lead_generation", staleness_hours=24, min_interval_hours=20),
    ActivityPolicy("sync_emails", staleness_hours=6, min_interval_hours=1),
    ActivityPolicy("deep_research", staleness_hours=48),
    ActivityPolicy("build_content", staleness_hours=24),
    ActivityPolicy(
        "daily_operations",
        scope=ActivityScope.GLOBAL,
        staleness_hours=12,
        min_interval_hours=20,
    ),
)


class ActivityPolicyTable:
    """Lookup of activity policies with a default for unknown keys."""

    def __init__(
        self,
        policies: Iterable[ActivityPolicy] = DEFAULT_ACTIVITY_POLICIES,
        *,
        default_staleness_hours: float = 24.0,
        default_catch_up_hours: float = 4.0,
    ) -> None:
        self._policies: dict[str, ActivityPolicy] = {}
        for policy in policies:
            self._policies[policy.key] = policy
        self._default_staleness_hours = default_staleness_hours
        self._default_catch_up_hours = default_catch_up_hours

    @classmethod
    def from_overrides(
        cls,
        overrides: Mapping[str, Mapping[str, Any]],
        *,
        base: Iterable[ActivityPolicy] = DEFAULT_ACTIVITY_POLICIES,
        default_staleness_hours: float = 24.0,
        default_catch_up_hours: float = 4.0,
    ) -> ActivityPolicyTable:
        """Apply per-key overrides on top of ``base``; unknown keys add policies."""
        merged = {policy.key: policy for policy in base}
        for key, updates in overrides.items():
            current = merged.get(
                key,
                ActivityPolicy(
                    key,
                    staleness_hours=default_staleness_hours,
                    catch_up_hours=default_catch_up_hours,
                ),
            )
            merged[key] = current.merged(updates)
        return cls(
            merged.values(),
            default_staleness_hours=default_staleness_hours,
            default_catch_up_hours=default_catch_up_hours,
        )

    def get(self, key: str) -> ActivityPolicy:
        policy = self._policies.get(key)
        if policy is not None:
            return policy
        return ActivityPolicy(
            key,
            staleness_hours=self._default_staleness_hours,
            catch_up_hours=self._default_catch_up_hours,
        )

    def __contains__(self, key: object) -> bool:
        return key in self._policies

    def all(self) -> list[ActivityPolicy]:
        return list(self._policies.values())

    def enabled(self, scope: ActivityScope | None = None) -> list[ActivityPolicy]:
        return [
            p
            for p in self._policies.values()
            if p.enabled and (scope is None or p.scope is scope)
        ]

    def staleness_thresholds(self) -> dict[str, timedelta]:
        return {key: policy.staleness for key, policy in self._policies.items()}
