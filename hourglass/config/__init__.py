"""Unified configuration system for Hourglass."""

from hourglass.config.listeners import apply_scheduler_config, register_scheduler_reload_listener
from hourglass.config.loader import ConfigLoadError, YAMLConfigLoader
from hourglass.config.manager import ConfigManager, ReloadResult
from hourglass.config.models import (
    ActivityPolicyConfig,
    DatabaseConfig,
    FallbackConfig,
    HatchetSectionConfig,
    HourglassConfig,
    PriorityConfig,
    SchedulingConfig,
    SitesConfig,
)

__all__ = [
    "ActivityPolicyConfig",
    "ConfigLoadError",
    "ConfigManager",
    "DatabaseConfig",
    "FallbackConfig",
    "HatchetSectionConfig",
    "HourglassConfig",
    "PriorityConfig",
    "ReloadResult",
    "SchedulingConfig",
    "SitesConfig",
    "YAMLConfigLoader",
    "apply_scheduler_config",
    "register_scheduler_reload_listener",
]
