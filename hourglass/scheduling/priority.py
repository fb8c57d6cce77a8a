"""Priority tiers for dispatched work and the static activity table."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class PriorityTier(str, Enum):
    """Urgency tiers; CRITICAL is the most urgent."""

    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"
    BACKGROUND = "background"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    @classmethod
    def parse(cls, value: str | PriorityTier | None) -> PriorityTier | None:
        """Parse a tier name case-insensitively; None for empty or unknown names."""
        if value is None or isinstance(value, PriorityTier):
            return value
        name = str(value).strip().lower()
        if not name:
            return None
        try:
            return cls(name)
        except ValueError:
            logger.warning("priority_unknown_tier value=%s", value)
            return None


_TIER_ORDER = (
    PriorityTier.CRITICAL,
    PriorityTier.HIGH,
    PriorityTier.NORMAL,
    PriorityTier.LOW,
    PriorityTier.BACKGROUND,
)


@dataclass(frozen=True)
class TierBudget:
    """Resource limits and routing hints bound to a tier."""

    max_concurrency: int
    max_duration: timedelta
    task_queue: str
    runtime_priority: int


DEFAULT_TIER_BUDGETS: dict[PriorityTier, TierBudget] = {
    PriorityTier.CRITICAL: TierBudget(50, timedelta(minutes=2), "critical-priority", 3),
    PriorityTier.HIGH: TierBudget(30, timedelta(minutes=5), "high-priority", 3),
    PriorityTier.NORMAL: TierBudget(15, timedelta(minutes=15), "default", 2),
    PriorityTier.LOW: TierBudget(8, timedelta(minutes=30), "low-priority", 1),
    PriorityTier.BACKGROUND: TierBudget(5, timedelta(minutes=60), "background-priority", 1),
}

DEFAULT_ACTIVITY_TIERS: dict[str, PriorityTier] = {
    "customer_support_message": PriorityTier.HIGH,
    "email_customer_support_message": PriorityTier.HIGH,
    "lead_attention": PriorityTier.HIGH,
    "send_email_from_agent": PriorityTier.HIGH,
    "send_whatsapp_from_agent": PriorityTier.HIGH,
    "daily_stand_up": PriorityTier.NORMAL,
    "lead_generation": PriorityTier.NORMAL,
    "daily_prospection": PriorityTier.NORMAL,
    "build_campaigns": PriorityTier.LOW,
    "build_content": PriorityTier.LOW,
    "analyze_site": PriorityTier.LOW,
    "daily_operations": PriorityTier.BACKGROUND,
    "schedule_activities": PriorityTier.BACKGROUND,
    "sync_emails_schedule": PriorityTier.BACKGROUND,
}

CUSTOMER_FACING_ACTIVITIES = frozenset(
    {
        "customer_support_message",
        "email_customer_support_message",
        "lead_attention",
        "send_email_from_agent",
        "send_whatsapp_from_agent",
    }
)


@dataclass(frozen=True)
class ExpediteContext:
    """Signals that can raise an activity above its table tier."""

    is_retry: bool = False
    previous_failed: bool = False
    hours_stuck: float = 0.0
    business_impact: str = "normal"


class PriorityTierAssigner:
    """Assigns a tier per activity: explicit override, forced tier, table, NORMAL."""

    def __init__(
        self,
        table: Mapping[str, PriorityTier] | None = None,
        *,
        force_tier: PriorityTier | None = None,
        budgets: Mapping[PriorityTier, TierBudget] | None = None,
        customer_facing: frozenset[str] = CUSTOMER_FACING_ACTIVITIES,
    ) -> None:
        self._table = dict(DEFAULT_ACTIVITY_TIERS if table is None else table)
        self._force_tier = force_tier
        self._budgets = {**DEFAULT_TIER_BUDGETS, **dict(budgets or {})}
        self._customer_facing = customer_facing

    @property
    def force_tier(self) -> PriorityTier | None:
        return self._force_tier

    def assign(
        self,
        activity_type: str,
        explicit_override: PriorityTier | str | None = None,
    ) -> PriorityTier:
        override = PriorityTier.parse(explicit_override)
        if override is not None:
            return override
        if self._force_tier is not None:
            return self._force_tier
        return self._table.get(activity_type, PriorityTier.NORMAL)

    def expedite(self, activity_type: str, context: ExpediteContext) -> PriorityTier:
        """Raise the tier for retries, stuck runs and customer-facing work."""
        customer_facing = activity_type in self._customer_facing
        failed_retry = context.is_retry and context.previous_failed
        if (failed_retry and customer_facing) or context.hours_stuck > 24 or context.business_impact == "high":
            return PriorityTier.CRITICAL
        if customer_facing or failed_retry or context.hours_stuck > 6:
            return PriorityTier.HIGH
        return self.assign(activity_type)

    def budget(self, tier: PriorityTier) -> TierBudget:
        return self._budgets[tier]

    def describe(self) -> dict[str, Any]:
        return {
            "force_tier": self._force_tier.value if self._force_tier else None,
            "table": {key: tier.value for key, tier in sorted(self._table.items())},
        }
