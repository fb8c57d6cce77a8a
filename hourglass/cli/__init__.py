"""CLI tools: hourglass tick, decide, records, health, init, reload."""

from __future__ import annotations

import logging
import sys
from importlib import metadata

import typer

from hourglass.cli.health import health_command
from hourglass.cli.init_config import init_config_command
from hourglass.cli.records import records_app
from hourglass.cli.reload_config import reload_config_command
from hourglass.cli.tick import decide_command, tick_command

app = typer.Typer(
    name="hourglass",
    help="Hourglass: business-hours aware scheduling for a fleet of sites.",
    no_args_is_help=True,
)
app.add_typer(records_app, name="records")

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _version() -> str:
    try:
        return metadata.version("hourglass")
    except metadata.PackageNotFoundError:
        return "unknown"


def _print_version(value: bool) -> None:
    if value:
        typer.echo(f"hourglass {_version()}")
        raise typer.Exit(0)


@app.callback()
def _configure(
    log_level: str = typer.Option("WARNING", "--log-level", help="DEBUG | INFO | WARNING | ERROR"),
    version: bool = typer.Option(
        False, "--version", "-V", help="Print version and exit", callback=_print_version, is_eager=True
    ),
) -> None:
    level = log_level.strip().upper()
    if level not in _LOG_LEVELS:
        raise typer.BadParameter(f"log level must be one of: {', '.join(_LOG_LEVELS)}")
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@app.command("tick")
def tick(
    config: str = typer.Option("", "--config", help="Config file path"),
    at: str = typer.Option("", "--at", help="Evaluate at this ISO-8601 instant instead of now"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Use an in-memory ledger and record dispatches only"),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
) -> None:
    """Run one scheduling pass over every site."""
    report = tick_command(config=config or None, at=at, dry_run=dry_run, as_json=as_json)
    if report.failed_sites:
        raise typer.Exit(2)


@app.command("decide")
def decide(
    site_id: str = typer.Argument(..., help="Site id"),
    activity: str = typer.Option("", "--activity", help="Only this activity key"),
    config: str = typer.Option("", "--config", help="Config file path"),
    at: str = typer.Option("", "--at", help="Evaluate at this ISO-8601 instant instead of now"),
) -> None:
    """Show timing decisions for one site without dispatching anything."""
    decide_command(site_id, activity=activity, config=config or None, at=at)


@app.command("health")
def health(
    config: str = typer.Option("", "--config", help="Config file path"),
    at: str = typer.Option("", "--at", help="Evaluate at this ISO-8601 instant instead of now"),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
) -> None:
    """Summarize stuck, long-running, failed and overdue execution records."""
    report = health_command(config=config or None, at=at, as_json=as_json)
    if report.needs_attention:
        raise typer.Exit(1)


@app.command("init")
def init_command(
    path: str = typer.Option(".", "--path", help="Output directory"),
    force: bool = typer.Option(False, "--force", help="Overwrite existing hourglass.yaml"),
) -> None:
    """Generate default hourglass.yaml in target directory."""
    try:
        init_config_command(path=path, force=force)
    except FileExistsError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(1) from exc


@app.command("reload")
def reload_command(
    config: str = typer.Option("", "--config", help="Optional config file path"),
) -> None:
    """Reload configuration and print applied/skipped changes."""
    reload_config_command(config=config or None)


def main() -> None:
    """CLI entry point."""
    try:
        app()
    except KeyboardInterrupt:
        sys.exit(130)
