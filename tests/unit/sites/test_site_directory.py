"""Unit tests for site payload parsing and directories."""

from __future__ import annotations

from pathlib import Path

import pytest

from hourglass.sites.directory import (
    Site,
    SiteDirectoryError,
    StaticSiteDirectory,
    YAMLSiteDirectory,
    sites_from_payloads,
)


def test_site_from_camel_case_payload() -> None:
    site = Site.from_payload(
        {
            "id": 42,
            "timezone": "America/Mexico_City",
            "businessHours": {"monday": {"open": "09:00", "close": "18:00"}},
            "activityOverrides": {"sync_emails": False},
            "name": "Centro",
        }
    )
    assert site.id == "42"
    assert site.has_business_hours
    assert site.activity_enabled("sync_emails") is False
    assert site.activity_enabled("lead_generation") is True
    assert site.name == "Centro"


def test_site_without_hours() -> None:
    site = Site.from_payload({"site_id": "s1", "business_hours": {"monday": {"enabled": False}}})
    assert site.business_hours is None
    assert not site.has_business_hours
    assert site.timezone is None


def test_site_requires_id() -> None:
    with pytest.raises(ValueError):
        Site.from_payload({"timezone": "UTC"})


def test_sites_from_payloads_skips_invalid() -> None:
    sites = sites_from_payloads([{"id": "a"}, "junk", {"name": "no id"}, Site(id="b")])
    assert [s.id for s in sites] == ["a", "b"]


@pytest.mark.asyncio
async def test_static_directory_get_site() -> None:
    directory = StaticSiteDirectory([{"id": "a"}, {"id": "b"}])
    assert [s.id for s in await directory.list_sites()] == ["a", "b"]
    found = await directory.get_site("b")
    assert found is not None and found.id == "b"
    assert await directory.get_site("missing") is None


@pytest.mark.asyncio
async def test_yaml_directory_reads_sites(tmp_path: Path) -> None:
    path = tmp_path / "sites.yaml"
    path.write_text(
        "sites:\n"
        "  - id: mx\n"
        "    timezone: America/Mexico_City\n"
        "    business_hours:\n"
        "      days:\n"
        "        monday: {open: '09:00', close: '18:00'}\n"
        "  - id: paris\n",
        encoding="utf-8",
    )
    sites = await YAMLSiteDirectory(path).list_sites()
    assert [s.id for s in sites] == ["mx", "paris"]
    assert sites[0].has_business_hours


@pytest.mark.asyncio
async def test_yaml_directory_accepts_top_level_list(tmp_path: Path) -> None:
    path = tmp_path / "sites.yaml"
    path.write_text("- id: one\n- id: two\n", encoding="utf-8")
    assert len(await YAMLSiteDirectory(path).list_sites()) == 2


@pytest.mark.asyncio
async def test_yaml_directory_errors(tmp_path: Path) -> None:
    with pytest.raises(SiteDirectoryError, match="not found"):
        await YAMLSiteDirectory(tmp_path / "missing.yaml").list_sites()
    bad = tmp_path / "bad.yaml"
    bad.write_text("sites: [\n", encoding="utf-8")
    with pytest.raises(SiteDirectoryError, match="Invalid YAML"):
        await YAMLSiteDirectory(bad).list_sites()
    scalar = tmp_path / "scalar.yaml"
    scalar.write_text("42\n", encoding="utf-8")
    with pytest.raises(SiteDirectoryError):
        await YAMLSiteDirectory(scalar).list_sites()
