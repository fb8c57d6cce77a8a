"""Fleet health command."""

from __future__ import annotations

import json

import typer
from rich.console import Console
from rich.table import Table

from hourglass.cli._common import load_app, parse_at, run_with_app
from hourglass.scheduling.health import HealthReport

console = Console()

_STATUS_STYLE = {"healthy": "green", "degraded": "yellow", "unhealthy": "red"}


def health_command(*, config: str | None = None, at: str = "", as_json: bool = False) -> HealthReport:
    now = parse_at(at)
    app = load_app(config)
    report = run_with_app(app, lambda a: a.health(now))
    if as_json:
        typer.echo(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
        return report

    style = _STATUS_STYLE.get(report.status, "white")
    console.print(f"Status: [{style}]{report.status}[/{style}] ({report.total} records)")
    problems = [
        ("stuck", report.stuck),
        ("long running", report.long_running),
        ("failed", report.failed),
        ("overdue", report.overdue),
    ]
    if report.issues:
        table = Table(title="Issues")
        table.add_column("Kind")
        table.add_column("Activity")
        table.add_column("Site")
        table.add_column("Updated")
        table.add_column("Error")
        for kind, records in problems:
            for record in records:
                table.add_row(
                    kind,
                    record.activity_key,
                    record.site_id,
                    record.updated_at.isoformat(),
                    record.error_message or "",
                )
        console.print(table)
    for line in report.recommendations:
        console.print(f"  - {line}")
    return report
