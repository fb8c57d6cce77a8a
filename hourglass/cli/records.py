"""Execution record CLI command helpers."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import typer
from rich.console import Console
from rich.table import Table

from hourglass.cli._common import load_app, parse_at, run_with_app
from hourglass.records.models import ExecutionRecord, ExecutionStatus, IllegalTransitionError

console = Console()

records_app = typer.Typer(help="Inspect and repair execution records.")


def _parse_status(value: str) -> ExecutionStatus | None:
    text = value.strip().lower()
    if not text:
        return None
    try:
        return ExecutionStatus(text)
    except ValueError as exc:
        choices = ", ".join(s.value for s in ExecutionStatus)
        raise typer.BadParameter(f"status must be one of: {choices}") from exc


def list_command(
    *,
    config: str | None = None,
    status: str = "",
    activity: str = "",
    limit: int = 50,
    as_json: bool = False,
) -> list[ExecutionRecord]:
    if limit < 1:
        raise typer.BadParameter("limit must be >= 1.")
    status_filter = _parse_status(status)
    app = load_app(config)
    rows = run_with_app(
        app,
        lambda a: a.store.list_records(
            status=status_filter,
            activity_key=activity.strip() or None,
            limit=limit,
        ),
    )
    if as_json:
        typer.echo(json.dumps([r.to_dict() for r in rows], ensure_ascii=False, indent=2))
        return rows
    table = Table(title="Execution records")
    for column in ("Activity", "Site", "Status", "Last run", "Updated", "Retries", "Error"):
        table.add_column(column)
    for r in rows:
        table.add_row(
            r.activity_key,
            r.site_id,
            r.status.value,
            r.last_run_at.isoformat() if r.last_run_at else "-",
            r.updated_at.isoformat(),
            str(r.retry_count),
            r.error_message or "",
        )
    console.print(table)
    return rows


def reap_command(*, config: str | None = None, at: str = "") -> int:
    now = parse_at(at) or datetime.now(timezone.utc)
    app = load_app(config)
    result = run_with_app(app, lambda a: a.reap(now))
    for record in result.cleaned:
        console.print(f"[yellow]Reclaimed[/yellow] {record.activity_key}/{record.site_id}: {record.error_message}")
    for error in result.errors:
        console.print(f"[red]Error[/red] {error}")
    console.print(f"Reclaimed: {len(result.cleaned)}")
    return len(result.cleaned)


def finish_command(
    activity: str,
    site_id: str,
    *,
    status: ExecutionStatus,
    error: str = "",
    config: str | None = None,
) -> ExecutionRecord:
    now = datetime.now(timezone.utc)
    app = load_app(config)
    try:
        record = run_with_app(
            app,
            lambda a: a.store.finish(
                activity.strip(),
                site_id.strip(),
                status,
                now=now,
                error_message=error.strip() or None,
            ),
        )
    except IllegalTransitionError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc
    console.print(f"{record.activity_key}/{record.site_id} -> {record.status.value}")
    return record


@records_app.command("list")
def list_records(
    config: str = typer.Option("", "--config", help="Config file path"),
    status: str = typer.Option("", "--status", help="pending | running | completed | failed"),
    activity: str = typer.Option("", "--activity", help="Filter by activity key"),
    limit: int = typer.Option(50, "--limit", help="Maximum rows"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
) -> None:
    """List execution records, most recently updated first."""
    list_command(config=config or None, status=status, activity=activity, limit=limit, as_json=as_json)


@records_app.command("reap")
def reap_records(
    config: str = typer.Option("", "--config", help="Config file path"),
    at: str = typer.Option("", "--at", help="Evaluate at this ISO-8601 instant"),
) -> None:
    """Reclaim RUNNING records older than their activity's staleness threshold."""
    reap_command(config=config or None, at=at)


@records_app.command("complete")
def complete_record(
    activity: str = typer.Argument(..., help="Activity key"),
    site_id: str = typer.Argument(..., help="Site id (or 'global')"),
    config: str = typer.Option("", "--config", help="Config file path"),
) -> None:
    """Mark a RUNNING record COMPLETED."""
    finish_command(activity, site_id, status=ExecutionStatus.COMPLETED, config=config or None)


@records_app.command("fail")
def fail_record(
    activity: str = typer.Argument(..., help="Activity key"),
    site_id: str = typer.Argument(..., help="Site id (or 'global')"),
    error: str = typer.Option("manually failed", "--error", help="Error message to store"),
    config: str = typer.Option("", "--config", help="Config file path"),
) -> None:
    """Mark a RUNNING record FAILED."""
    finish_command(activity, site_id, status=ExecutionStatus.FAILED, error=error, config=config or None)
