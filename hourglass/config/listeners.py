"""Configuration change listener helpers for runtime components."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from hourglass.config import builders
from hourglass.config.manager import ConfigManager
from hourglass.config.models import HourglassConfig

if TYPE_CHECKING:
    from hourglass.scheduling.fleet import FleetScheduler

logger = logging.getLogger(__name__)


def apply_scheduler_config(scheduler: FleetScheduler, config: HourglassConfig) -> None:
    """Push hot-reloadable settings into a running scheduler."""
    scheduler.fallback = builders.fallback_policy(config)
    scheduler.policies = builders.policy_table(config)
    scheduler.assigner = builders.tier_assigner(config)
    scheduler.max_concurrency = config.scheduling.max_concurrency
    scheduler.escalate_retries = config.priority.escalate_retries
    scheduler.default_timezone = config.scheduling.default_timezone


def register_scheduler_reload_listener(
    scheduler: FleetScheduler,
    manager: ConfigManager | None = None,
) -> None:
    """Register listener that refreshes scheduler policies on config change."""
    cfg_manager = manager or ConfigManager.instance()

    def _on_change(_old_cfg: HourglassConfig, new_cfg: HourglassConfig) -> None:
        apply_scheduler_config(scheduler, new_cfg)
        logger.info("scheduler_config_reloaded activities=%d", len(scheduler.policies.all()))

    cfg_manager.on_change(_on_change)
