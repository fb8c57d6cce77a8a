"""Reads hourglass.yaml into a plain mapping.

String values may reference the environment as ``${NAME}`` or
``${NAME:-fallback}``; an unset variable without a fallback expands to an
empty string.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


class ConfigLoadError(ValueError):
    """Raised when the config file exists but is not a usable YAML mapping."""


def expand_env_refs(value: Any) -> Any:
    """Expand ``${NAME}`` references in every string nested inside ``value``."""
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1)) or (m.group(2) or ""), value)
    if isinstance(value, dict):
        return {k: expand_env_refs(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_refs(v) for v in value]
    return value


class YAMLConfigLoader:
    DEFAULT_FILENAME = "hourglass.yaml"
    ENV_VAR = "HOURGLASS_CONFIG"

    @classmethod
    def resolve_path(cls, cli_path: str | None = None) -> Path:
        """``$HOURGLASS_CONFIG`` wins over ``cli_path``; both fall back to ./hourglass.yaml."""
        for candidate in (os.environ.get(cls.ENV_VAR), cli_path):
            if candidate and candidate.strip():
                return Path(candidate.strip())
        return Path.cwd() / cls.DEFAULT_FILENAME

    @classmethod
    def load_dict(cls, path: str | Path | None = None) -> dict[str, Any]:
        """Return the file's top-level mapping with env references expanded.

        A missing or blank file is an empty mapping, not an error.
        """
        target = cls.resolve_path() if path is None else Path(path)
        if not target.is_file():
            return {}
        try:
            data = yaml.safe_load(target.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            mark = getattr(exc, "problem_mark", None)
            where = f"{target}:{mark.line + 1}:{mark.column + 1}" if mark is not None else str(target)
            raise ConfigLoadError(f"Invalid YAML at {where}") from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigLoadError(f"Config root must be a mapping, got {type(data).__name__}: {target}")
        return expand_env_refs(data)
