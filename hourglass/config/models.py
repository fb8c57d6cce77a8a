"""Configuration models for Hourglass."""

from __future__ import annotations

from croniter import croniter  # type: ignore[import-untyped]
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hourglass.scheduling.business_hours import parse_time
from hourglass.scheduling.priority import PriorityTier


def _check_time(value: str) -> str:
    if parse_time(value) is None:
        raise ValueError(f"time must be HH:MM or HH:MM:SS, got {value!r}")
    return value


def _check_tier(value: str | None) -> str | None:
    if value is None or not str(value).strip():
        return None
    name = str(value).strip().lower()
    if name not in {tier.value for tier in PriorityTier}:
        raise ValueError(f"unknown priority tier {value!r}")
    return name


class FallbackConfig(BaseModel):
    """Default window for sites without business hours."""

    weekdays: list[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])
    start: str = Field(default="08:00")
    end: str = Field(default="16:00")
    apply_to_closed_days: bool = Field(default=False)

    @field_validator("weekdays")
    @classmethod
    def weekdays_in_range(cls, v: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in v):
            raise ValueError("weekdays must be within 0..6 (0=Monday)")
        return sorted(set(v))

    @field_validator("start", "end")
    @classmethod
    def valid_time(cls, v: str) -> str:
        return _check_time(v)

    @model_validator(mode="after")
    def start_before_end(self) -> FallbackConfig:
        start, end = parse_time(self.start), parse_time(self.end)
        if start is not None and end is not None and start >= end:
            raise ValueError("fallback start must be before end")
        return self


class SchedulingConfig(BaseModel):
    """Fleet tick configuration."""

    default_timezone: str = Field(default="UTC")
    catch_up_hours: float = Field(default=4.0, ge=0.0, le=24.0)
    default_staleness_hours: float = Field(default=24.0, gt=0.0)
    max_concurrency: int = Field(default=10, ge=1, le=1000)
    tick_cron: str = Field(default="*/15 * * * *")
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)

    @field_validator("tick_cron")
    @classmethod
    def valid_cron(cls, v: str) -> str:
        if not croniter.is_valid(v.strip()):
            raise ValueError(f"invalid cron expression: {v!r}")
        return v.strip()


class ActivityPolicyConfig(BaseModel):
    """Per-activity overrides; unset fields keep the built-in policy."""

    scope: str | None = Field(default=None)
    enabled: bool | None = Field(default=None)
    catch_up_hours: float | None = Field(default=None, ge=0.0)
    staleness_hours: float | None = Field(default=None, gt=0.0)
    min_interval_hours: float | None = Field(default=None, ge=0.0)
    priority: str | None = Field(default=None)
    task_name: str | None = Field(default=None)

    @field_validator("scope")
    @classmethod
    def valid_scope(cls, v: str | None) -> str | None:
        if v is not None and v not in ("site", "global"):
            raise ValueError("scope must be 'site' or 'global'")
        return v

    @field_validator("priority")
    @classmethod
    def valid_priority(cls, v: str | None) -> str | None:
        return _check_tier(v)


class PriorityConfig(BaseModel):
    """Priority tier assignment configuration."""

    force_tier: str | None = Field(default=None)
    escalate_retries: bool = Field(default=True)
    table: dict[str, str] = Field(default_factory=dict)

    @field_validator("force_tier")
    @classmethod
    def valid_force_tier(cls, v: str | None) -> str | None:
        return _check_tier(v)

    @field_validator("table")
    @classmethod
    def valid_table(cls, v: dict[str, str]) -> dict[str, str]:
        return {key: _check_tier(tier) or PriorityTier.NORMAL.value for key, tier in v.items()}


class DatabaseConfig(BaseModel):
    """Execution record store configuration. Empty url selects the in-memory store."""

    url: str = Field(default="")
    tenant_id: str = Field(default="default", min_length=1, max_length=64)
    pool_size: int = Field(default=10, ge=1)
    max_overflow: int = Field(default=5, ge=0)
    pool_timeout: float = Field(default=30.0, gt=0.0)


class HatchetSectionConfig(BaseModel):
    """Hatchet integration configuration."""

    enabled: bool = Field(default=False)
    server_url: str = Field(default="")
    api_token: str = Field(default="")
    namespace: str = Field(default="hourglass")
    max_concurrent_tasks: int = Field(default=10, ge=1)
    worker_name: str = Field(default="")


class SitesConfig(BaseModel):
    """Site directory configuration."""

    path: str = Field(default="sites.yaml")


class HourglassConfig(BaseSettings):
    """Root configuration model for Hourglass."""

    scheduling: SchedulingConfig = Field(default_factory=SchedulingConfig)
    priority: PriorityConfig = Field(default_factory=PriorityConfig)
    activities: dict[str, ActivityPolicyConfig] = Field(default_factory=dict)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    hatchet: HatchetSectionConfig = Field(default_factory=HatchetSectionConfig)
    sites: SitesConfig = Field(default_factory=SitesConfig)

    model_config = SettingsConfigDict(
        env_prefix="HOURGLASS_",
        env_nested_delimiter="__",
        extra="ignore",
    )
