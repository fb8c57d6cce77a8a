"""Configuration manager for Hourglass: YAML < environment < runtime overrides."""

from __future__ import annotations

import json
import os
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from threading import Lock
from typing import Any, Callable, ClassVar

from hourglass.config.loader import YAMLConfigLoader
from hourglass.config.models import HourglassConfig

ConfigListener = Callable[[HourglassConfig, HourglassConfig], None]

ENV_PREFIX = "HOURGLASS_"

# Flat variables that map onto nested settings; HOURGLASS_CONFIG names the file itself.
_ENV_ALIASES: dict[str, tuple[str, ...]] = {
    "HOURGLASS_DATABASE_URL": ("database", "url"),
    "HOURGLASS_FORCE_TIER": ("priority", "force_tier"),
}
_ENV_IGNORED = frozenset({"HOURGLASS_CONFIG"})
_LITERALS: dict[str, Any] = {"true": True, "false": False, "null": None, "none": None}


def _merged(*layers: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge mappings left to right; later layers win on conflicts."""
    result: dict[str, Any] = {}
    for layer in layers:
        for key, value in layer.items():
            if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
                result[key] = _merged(result[key], value)
            else:
                result[key] = value
    return result


def _nested(path: tuple[str, ...], value: Any) -> dict[str, Any]:
    for part in reversed(path[1:]):
        value = {part: value}
    return {path[0]: value}


def _parse_env_scalar(raw: str) -> Any:
    text = raw.strip()
    if text.lower() in _LITERALS:
        return _LITERALS[text.lower()]
    if text[:1] in ("[", "{"):
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
    for number in (int, float):
        try:
            return number(text)
        except ValueError:
            continue
    return text


def _env_layer(prefix: str = ENV_PREFIX) -> dict[str, Any]:
    """``HOURGLASS_SECTION__KEY=value`` variables as a nested mapping."""
    layer: dict[str, Any] = {}
    for name in sorted(os.environ):
        if not name.startswith(prefix) or name in _ENV_IGNORED:
            continue
        raw = os.environ[name]
        if name in _ENV_ALIASES:
            # URLs and tier names stay strings.
            layer = _merged(layer, _nested(_ENV_ALIASES[name], raw.strip()))
            continue
        path = tuple(p.strip().lower() for p in name[len(prefix) :].split("__") if p.strip())
        if path:
            layer = _merged(layer, _nested(path, _parse_env_scalar(raw)))
    return layer


def _changed_paths(old: Mapping[str, Any], new: Mapping[str, Any], prefix: str = "") -> Iterator[tuple[str, Any]]:
    """Yield ``(dotted.path, new_value)`` for every leaf that differs."""
    for key in sorted(set(old) | set(new)):
        path = f"{prefix}{key}"
        before, after = old.get(key), new.get(key)
        if isinstance(before, Mapping) and isinstance(after, Mapping):
            yield from _changed_paths(before, after, path + ".")
        elif before != after:
            yield path, after


@dataclass(frozen=True)
class ReloadResult:
    """Dotted setting paths that took effect now, and those that wait for a restart."""

    applied: dict[str, Any]
    skipped: dict[str, Any]


@dataclass(frozen=True)
class _State:
    config: HourglassConfig = field(default_factory=HourglassConfig)
    path: str | None = None
    overrides: Mapping[str, Any] = field(default_factory=dict)


class ConfigManager:
    """Process-wide holder of the active :class:`HourglassConfig`.

    Scheduling knobs, priorities and activity policies reload in place;
    database, Hatchet and site directory settings need a restart.
    """

    _instance: ClassVar[ConfigManager | None] = None
    _instance_lock: ClassVar[Lock] = Lock()
    _hot_reloadable_prefixes: ClassVar[tuple[str, ...]] = (
        "scheduling.catch_up_hours",
        "scheduling.default_staleness_hours",
        "scheduling.default_timezone",
        "scheduling.fallback",
        "scheduling.max_concurrency",
        "priority",
        "activities",
    )

    def __init__(self) -> None:
        self._lock = Lock()
        self._state = _State()
        self._listeners: list[ConfigListener] = []

    @classmethod
    def instance(cls) -> ConfigManager:
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    @classmethod
    def _reset_for_tests(cls) -> None:
        with cls._instance_lock:
            cls._instance = None

    @staticmethod
    def _build(config_path: str | None, overrides: Mapping[str, Any]) -> HourglassConfig:
        return HourglassConfig.model_validate(
            _merged(YAMLConfigLoader.load_dict(config_path), _env_layer(), overrides)
        )

    @classmethod
    def _is_hot(cls, path: str) -> bool:
        return any(path == p or path.startswith(p + ".") for p in cls._hot_reloadable_prefixes)

    def _swap(self, state: _State) -> tuple[HourglassConfig, list[ConfigListener]]:
        with self._lock:
            previous = self._state.config
            self._state = state
            return previous, list(self._listeners)

    @classmethod
    def load(
        cls,
        config_path: str | None = None,
        overrides: dict[str, Any] | None = None,
    ) -> ConfigManager:
        """Replace the active config wholesale and notify every listener."""
        manager = cls.instance()
        state = _State(cls._build(config_path, overrides or {}), config_path, dict(overrides or {}))
        previous, listeners = manager._swap(state)
        for callback in listeners:
            callback(previous, state.config)
        return manager

    def get(self) -> HourglassConfig:
        with self._lock:
            return self._state.config

    @property
    def config_path(self) -> str | None:
        return self._state.path

    def on_change(self, callback: ConfigListener) -> None:
        """``callback(old, new)`` runs after every load and every reload that applied something."""
        with self._lock:
            self._listeners.append(callback)

    def reload(self, config_path: str | None = None) -> ReloadResult:
        """Re-read file and environment; apply hot sections, report the rest as skipped.

        Listeners are notified only when something was applied. Cold changes
        (database, hatchet, sites) stay at their running values until restart.
        """
        with self._lock:
            state = self._state
        path = state.path if config_path is None else config_path
        current = state.config.model_dump(mode="python")
        candidate = self._build(path, state.overrides).model_dump(mode="python")

        applied: dict[str, Any] = {}
        skipped: dict[str, Any] = {}
        for key, value in _changed_paths(current, candidate):
            (applied if self._is_hot(key) else skipped)[key] = value

        updated = state.config
        if applied:
            patches = [_nested(tuple(key.split(".")), value) for key, value in applied.items()]
            updated = HourglassConfig.model_validate(_merged(current, *patches))
        previous, listeners = self._swap(replace(state, config=updated, path=path))
        if applied:
            for callback in listeners:
                callback(previous, updated)
        return ReloadResult(applied=applied, skipped=skipped)
