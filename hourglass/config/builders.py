"""Build scheduling components from a validated :class:`HourglassConfig`."""

from __future__ import annotations

from hourglass.config.models import HourglassConfig
from hourglass.scheduling.business_hours import parse_time
from hourglass.scheduling.policies import DEFAULT_ACTIVITY_POLICIES, ActivityPolicyTable
from hourglass.scheduling.priority import DEFAULT_ACTIVITY_TIERS, PriorityTier, PriorityTierAssigner
from hourglass.scheduling.timing import FallbackPolicy


def fallback_policy(config: HourglassConfig) -> FallbackPolicy:
    section = config.scheduling.fallback
    return FallbackPolicy.from_values(
        weekdays=section.weekdays,
        start=parse_time(section.start),
        end=parse_time(section.end),
        apply_to_closed_days=section.apply_to_closed_days,
    )


def policy_table(config: HourglassConfig) -> ActivityPolicyTable:
    """Built-in activity policies with the configured overrides applied.

    ``scheduling.catch_up_hours`` replaces the built-in catch-up bound for
    every activity that does not set its own.
    """
    scheduling = config.scheduling
    base = [
        policy.merged({"catch_up_hours": scheduling.catch_up_hours})
        for policy in DEFAULT_ACTIVITY_POLICIES
    ]
    overrides = {
        key: section.model_dump(exclude_none=True)
        for key, section in config.activities.items()
    }
    return ActivityPolicyTable.from_overrides(
        overrides,
        base=base,
        default_staleness_hours=scheduling.default_staleness_hours,
        default_catch_up_hours=scheduling.catch_up_hours,
    )


def tier_assigner(config: HourglassConfig) -> PriorityTierAssigner:
    table = dict(DEFAULT_ACTIVITY_TIERS)
    table.update({key: PriorityTier(tier) for key, tier in config.priority.table.items()})
    return PriorityTierAssigner(table, force_tier=PriorityTier.parse(config.priority.force_tier))
