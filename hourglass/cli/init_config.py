"""Config template initialization command."""

from __future__ import annotations

from pathlib import Path

from rich.console import Console

console = Console()

TEMPLATE_PATH = Path(__file__).resolve().parents[1] / "templates" / "hourglass.yaml"


def init_config_command(path: str = ".", force: bool = False) -> Path:
    """Create hourglass.yaml (and an example sites.yaml) in ``path``."""
    if not TEMPLATE_PATH.exists():
        raise FileNotFoundError(f"Template not found: {TEMPLATE_PATH}")

    target_dir = Path(path).resolve()
    target_dir.mkdir(parents=True, exist_ok=True)
    output_path = target_dir / "hourglass.yaml"
    if output_path.exists() and not force:
        raise FileExistsError(f"Config already exists: {output_path}")
    output_path.write_text(TEMPLATE_PATH.read_text(encoding="utf-8"), encoding="utf-8")
    console.print(f"[green]Created[/green] {output_path}")

    sites_template = TEMPLATE_PATH.with_name("sites.yaml")
    sites_path = target_dir / "sites.yaml"
    if sites_template.exists() and not sites_path.exists():
        sites_path.write_text(sites_template.read_text(encoding="utf-8"), encoding="utf-8")
        console.print(f"[green]Created[/green] {sites_path}")
    return output_path
