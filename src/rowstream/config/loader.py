"""Load a rowstream YAML file into a validated ``RowstreamConfig``."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from rowstream.config.defaults import load_defaults, overlay
from rowstream.config.models import RowstreamConfig

# ${VAR} or ${VAR:-default}
_ENV_REF = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}")


def _expand(match: re.Match[str]) -> str:
    name = match["name"]
    if name in os.environ:
        return os.environ[name]
    if match["default"] is not None:
        return match["default"]
    msg = f"Environment variable '{name}' is not set and has no default"
    raise ValueError(msg)


def resolve_env_vars(data: Any) -> Any:
    """Expand environment references in every string of a parsed YAML tree."""
    if isinstance(data, str):
        return _ENV_REF.sub(_expand, data)
    if isinstance(data, dict):
        return {key: resolve_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [resolve_env_vars(item) for item in data]
    return data


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Parse a config file; raise ``ValueError`` unless it holds a mapping."""
    text = Path(path).read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        msg = f"Cannot parse {path}: {exc}"
        raise ValueError(msg) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"{path} must contain a mapping, not a {type(data).__name__}"
        raise ValueError(msg)
    return resolve_env_vars(data)


def load_config(path: str | Path | None = None) -> RowstreamConfig:
    """Layer *path* (if any) over the built-in defaults and validate."""
    data = load_defaults()
    if path is not None:
        data = overlay(data, load_yaml(path))
    try:
        return RowstreamConfig.model_validate(data)
    except ValidationError as exc:
        msg = f"Invalid rowstream config ({path or 'defaults'}):\n{exc}"
        raise ValueError(msg) from exc
