"""Shared helpers for CLI commands."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

import typer

from hourglass.app import Hourglass
from hourglass.config import ConfigLoadError
from hourglass.db import ConfigurationError

T = TypeVar("T")


def parse_at(value: str) -> datetime | None:
    """Parse an ISO-8601 instant; naive values are UTC. Empty means now."""
    text = value.strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise typer.BadParameter(f"--at must be ISO-8601, got {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def load_app(config: str | None, **components: Any) -> Hourglass:
    try:
        return Hourglass.from_config_file(config_path=config, **components)
    except (ConfigLoadError, ConfigurationError) as exc:
        raise typer.BadParameter(str(exc)) from exc


def run_with_app(app: Hourglass, func: Callable[[Hourglass], Awaitable[T]]) -> T:
    """Run an async operation against ``app`` and release its resources."""

    async def _runner() -> T:
        try:
            return await func(app)
        finally:
            await app.close()

    return asyncio.run(_runner())
