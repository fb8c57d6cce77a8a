"""Site directory abstractions."""

from hourglass.sites.directory import (
    Site,
    SiteDirectory,
    SiteDirectoryError,
    StaticSiteDirectory,
    YAMLSiteDirectory,
    sites_from_payloads,
)

__all__ = [
    "Site",
    "SiteDirectory",
    "SiteDirectoryError",
    "StaticSiteDirectory",
    "YAMLSiteDirectory",
    "sites_from_payloads",
]
