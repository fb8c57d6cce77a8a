"""Site directory: the fleet of sites and their scheduling attributes."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from hourglass.scheduling.business_hours import WeeklySchedule, parse_business_hours

logger = logging.getLogger(__name__)


class SiteDirectoryError(Exception):
    """Raised when the site directory cannot be read."""


@dataclass(frozen=True)
class Site:
    """One independently configured business site."""

    id: str
    timezone: str | None = None
    business_hours: WeeklySchedule | None = None
    activity_overrides: Mapping[str, bool] = field(default_factory=dict)
    name: str | None = None

    @property
    def has_business_hours(self) -> bool:
        return self.business_hours is not None and self.business_hours.has_hours

    def activity_enabled(self, activity_key: str) -> bool:
        """A missing override means enabled."""
        return self.activity_overrides.get(activity_key, True) is not False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Site:
        """Build a site from a directory payload (camelCase or snake_case keys)."""
        site_id = payload.get("id", payload.get("site_id"))
        if site_id is None or not str(site_id).strip():
            raise ValueError("site payload requires a non-empty 'id'")
        hours_raw = payload.get("businessHours", payload.get("business_hours"))
        overrides_raw = payload.get("activityOverrides", payload.get("activity_overrides")) or {}
        overrides: dict[str, bool] = {}
        if isinstance(overrides_raw, Mapping):
            overrides = {str(k): bool(v) for k, v in overrides_raw.items()}
        timezone_raw = payload.get("timezone")
        return cls(
            id=str(site_id).strip(),
            timezone=str(timezone_raw).strip() if timezone_raw else None,
            business_hours=parse_business_hours(hours_raw),
            activity_overrides=overrides,
            name=payload.get("name"),
        )


class SiteDirectory(ABC):
    """Source of the sites to schedule."""

    @abstractmethod
    async def list_sites(self) -> list[Site]:
        """Return every site to consider this tick."""

    async def get_site(self, site_id: str) -> Site | None:
        for site in await self.list_sites():
            if site.id == site_id:
                return site
        return None


def sites_from_payloads(payloads: Iterable[Any]) -> list[Site]:
    """Parse site payloads, skipping (and logging) entries that are not valid sites."""
    sites: list[Site] = []
    for index, payload in enumerate(payloads):
        if isinstance(payload, Site):
            sites.append(payload)
            continue
        if not isinstance(payload, Mapping):
            logger.warning("site_directory_skip index=%d reason=not a mapping", index)
            continue
        try:
            sites.append(Site.from_payload(payload))
        except ValueError as exc:
            logger.warning("site_directory_skip index=%d reason=%s", index, exc)
    return sites


class StaticSiteDirectory(SiteDirectory):
    """In-memory directory for tests, embedding and dry runs."""

    def __init__(self, sites: Iterable[Site | Mapping[str, Any]] = ()) -> None:
        self._sites = sites_from_payloads(sites)

    async def list_sites(self) -> list[Site]:
        return list(self._sites)


class YAMLSiteDirectory(SiteDirectory):
    """Reads a ``sites:`` list from a YAML file on every call."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def list_sites(self) -> list[Site]:
        if not self.path.exists():
            raise SiteDirectoryError(f"Site directory file not found: {self.path}")
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise SiteDirectoryError(f"Invalid YAML at {self.path}") from exc
        if isinstance(data, list):
            entries = data
        elif isinstance(data, Mapping):
            entries = data.get("sites") or []
        else:
            raise SiteDirectoryError(f"Site directory root must be a mapping or list: {self.path}")
        return sites_from_payloads(entries)
