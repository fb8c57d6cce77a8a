"""``hourglass reload``: re-read configuration and show what took effect."""

from __future__ import annotations

from pathlib import Path

from rich.console import Console
from rich.table import Table

from hourglass.config import ConfigLoadError, ConfigManager, ReloadResult

console = Console()


def _changes_table(result: ReloadResult) -> Table:
    table = Table(title="Reload Result")
    table.add_column("Setting")
    table.add_column("New value")
    table.add_column("Effect")
    for key, value in sorted(result.applied.items()):
        table.add_row(key, repr(value), "[green]applied[/green]")
    for key, value in sorted(result.skipped.items()):
        table.add_row(key, repr(value), "[yellow]restart required[/yellow]")
    return table


def reload_config_command(config: str | None = None) -> ReloadResult:
    manager = ConfigManager.instance()
    try:
        result = manager.reload(config_path=config)
    except ConfigLoadError as exc:
        console.print(f"[red]Reload failed:[/red] {exc}")
        raise
    if config is not None and not Path(config).exists():
        console.print(f"[yellow]Config file not found, using defaults and environment:[/yellow] {config}")
    if not result.applied and not result.skipped:
        console.print("Reload Result: no changes")
        return result
    console.print(_changes_table(result))
    console.print(f"Applied: {len(result.applied)}  Skipped: {len(result.skipped)}")
    return result
