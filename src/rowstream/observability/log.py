"""structlog setup for the CLI and long-running processes."""

from __future__ import annotations

import logging
from typing import Any

import structlog


def configure_logging(level: str = "info", *, json: bool = False) -> None:
    """Configure structlog once for the process."""
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        msg = f"Unknown log level '{level}'"
        raise ValueError(msg)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
    )
