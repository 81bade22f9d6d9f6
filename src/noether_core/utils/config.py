"""Config file loading for the keeper (``--config keeper.toml``).

The file is optional; it only carries the ``[keeper]``, ``[errors]`` and
``[[assets]]`` sections. Chain identifiers and keys come from the environment.
"""
from __future__ import annotations

import json
import tomllib
from pathlib import Path
from typing import Any, Callable, Final

import yaml


class ConfigError(RuntimeError):
    """Raised when configuration is missing, invalid, or cannot be loaded."""


def _parse_yaml(text: str) -> Any:
    return yaml.safe_load(text)


_PARSERS: Final[dict[str, tuple[str, Callable[[str], Any], tuple[type[Exception], ...]]]] = {
    ".toml": ("TOML", tomllib.loads, (tomllib.TOMLDecodeError,)),
    ".json": ("JSON", json.loads, (json.JSONDecodeError,)),
    ".yaml": ("YAML", _parse_yaml, (yaml.YAMLError,)),
    ".yml": ("YAML", _parse_yaml, (yaml.YAMLError,)),
}


def load_config(path: str | Path) -> dict[str, Any]:
    """Read ``path`` as TOML / JSON / YAML (by suffix) and return its top-level mapping."""
    config_path = Path(path)
    entry = _PARSERS.get(config_path.suffix.lower())
    if entry is None:
        raise ConfigError(f"unsupported config extension: {config_path.suffix or config_path.name}")
    kind, parse, errors = entry

    try:
        text = config_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"config file not found: {config_path}") from exc

    try:
        data = parse(text)
    except errors as exc:
        raise ConfigError(f"invalid {kind} config {config_path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{kind} config must define a mapping at the top level")
    return data


__all__ = ["ConfigError", "load_config"]
