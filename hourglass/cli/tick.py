"""Scheduling tick and single-decision commands."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import typer
from rich.console import Console
from rich.table import Table

from hourglass.cli._common import load_app, parse_at, run_with_app
from hourglass.integrations.dispatch import RecordingDispatcher
from hourglass.records.store_inmemory import InMemoryExecutionRecordStore
from hourglass.scheduling.fleet import SchedulingReport, SiteDecision

console = Console()


def _decision_table(decisions: list[SiteDecision], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Activity")
    table.add_column("Site")
    table.add_column("Local time")
    table.add_column("Decision")
    table.add_column("Detail")
    for item in decisions:
        decision = item.decision
        detail = decision.reason or (decision.at.isoformat() if decision.at else "")
        local = item.local_time.strftime("%a %H:%M %Z") if item.local_time else "-"
        table.add_row(item.activity_key, item.site_id, local, decision.kind.value, detail)
    return table


def _print_report(report: SchedulingReport) -> None:
    console.print(_decision_table(report.decisions, f"Tick {report.tick_at.isoformat()}"))
    if report.outcomes:
        outcomes = Table(title="Dispatch")
        outcomes.add_column("Activity")
        outcomes.add_column("Site")
        outcomes.add_column("Outcome")
        outcomes.add_column("Tier")
        outcomes.add_column("Mode")
        outcomes.add_column("Run id / detail")
        for item in report.outcomes:
            outcomes.add_row(
                item.activity_key,
                item.site_id,
                item.outcome.value,
                item.priority_tier.value if item.priority_tier else "-",
                item.mode.value if item.mode else "-",
                item.run_id or item.detail or "",
            )
        console.print(outcomes)
    summary = report.summary()
    console.print(
        f"Sites: {summary['total_sites']} (with hours: {summary['sites_with_hours']}, "
        f"open today: {summary['sites_open_today']})"
    )
    for site_id, error in report.failed_sites.items():
        console.print(f"[red]Failed site[/red] {site_id}: {error}")


def tick_command(
    *,
    config: str | None = None,
    at: str = "",
    dry_run: bool = False,
    as_json: bool = False,
) -> SchedulingReport:
    """Run one scheduling pass and print the report."""
    now = parse_at(at)
    components = {}
    if dry_run:
        components = {"store": InMemoryExecutionRecordStore(), "dispatcher": RecordingDispatcher()}
    app = load_app(config, **components)
    report = run_with_app(app, lambda a: a.run_tick(now))
    if as_json:
        typer.echo(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    else:
        _print_report(report)
    return report


def decide_command(
    site_id: str,
    *,
    activity: str = "",
    config: str | None = None,
    at: str = "",
) -> list[SiteDecision]:
    """Print timing decisions for one site without touching the ledger."""
    normalized = site_id.strip()
    if not normalized:
        raise typer.BadParameter("site id must not be empty.")
    now = parse_at(at) or datetime.now(timezone.utc)
    app = load_app(config, store=InMemoryExecutionRecordStore(), dispatcher=RecordingDispatcher())

    async def _decide(a) -> list[SiteDecision]:  # type: ignore[no-untyped-def]
        site = await a.directory.get_site(normalized)
        if site is None:
            return []
        policies = [a.scheduler.policies.get(activity.strip())] if activity.strip() else a.scheduler.policies.enabled()
        return [a.scheduler.decide(site, policy, now) for policy in policies]

    decisions = run_with_app(app, _decide)
    if not decisions:
        console.print(f"[red]Site not found:[/red] {normalized}")
        raise typer.Exit(1)
    console.print(_decision_table(decisions, f"Site {normalized} at {now.isoformat()}"))
    return decisions
