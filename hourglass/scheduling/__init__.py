"""Scheduling primitives: business hours, timing decisions, priorities and policies.

The fleet tick lives in :mod:`hourglass.scheduling.fleet`.
"""

from hourglass.scheduling.business_hours import (
    BusinessHoursWindow,
    WeeklySchedule,
    WindowState,
    evaluate_business_hours,
    parse_business_hours,
)
from hourglass.scheduling.policies import (
    DEFAULT_ACTIVITY_POLICIES,
    ActivityPolicy,
    ActivityPolicyTable,
    ActivityScope,
)
from hourglass.scheduling.priority import (
    DEFAULT_ACTIVITY_TIERS,
    DEFAULT_TIER_BUDGETS,
    ExpediteContext,
    PriorityTier,
    PriorityTierAssigner,
    TierBudget,
)
from hourglass.scheduling.timing import (
    DEFAULT_FALLBACK,
    DecisionKind,
    FallbackPolicy,
    TimingDecision,
    decide_timing,
)

__all__ = [
    "ActivityPolicy",
    "ActivityPolicyTable",
    "ActivityScope",
    "BusinessHoursWindow",
    "DEFAULT_ACTIVITY_POLICIES",
    "DEFAULT_ACTIVITY_TIERS",
    "DEFAULT_FALLBACK",
    "DEFAULT_TIER_BUDGETS",
    "DecisionKind",
    "ExpediteContext",
    "FallbackPolicy",
    "PriorityTier",
    "PriorityTierAssigner",
    "TierBudget",
    "TimingDecision",
    "WeeklySchedule",
    "WindowState",
    "decide_timing",
    "evaluate_business_hours",
    "parse_business_hours",
]
