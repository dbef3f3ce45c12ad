"""Built-in settings that every config file is layered over."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

DEFAULTS_FILE = Path(__file__).parent / "defaults" / "platform.yaml"


def load_defaults() -> dict[str, Any]:
    """Read the bundled ``platform.yaml``."""
    return yaml.safe_load(DEFAULTS_FILE.read_text(encoding="utf-8")) or {}


def overlay(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Return *base* with *overrides* applied section by section.

    Nested mappings are overlaid key by key; any other value replaces the
    base value outright. Neither argument is modified.
    """
    result = dict(base)
    for key, value in overrides.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = overlay(current, value)
        result[key] = value
    return result
