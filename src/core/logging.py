"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import sys

import structlog

from src.core.config import get_settings

# Parent of every alarm-manager logger (``src.alarms.manager`` etc.).
ALARMS_LOGGER = "src.alarms"

_RENDERERS = ("json", "console")


def _to_level(name: str | None, default: int) -> int:
    if not name:
        return default
    return getattr(logging, name.upper(), default)


def setup_logging(
    level: str | None = None,
    fmt: str | None = None,
    alarms_level: str | None = None,
) -> None:
    """Route structlog and stdlib logging through one stderr handler.

    Args:
        level: Root log level override (e.g. "DEBUG"). Uses config if None.
        fmt: Renderer override ("json" or "console"). Uses config if None.
            Unknown values fall back to the console renderer.
        alarms_level: Level for the ``src.alarms`` loggers only, so
            per-change ``alarm_changed`` events can be turned on without
            making everything else verbose. Uses config if None; when the
            config leaves it unset the alarm loggers follow the root level.
    """
    settings = get_settings()
    root_level = _to_level(level or settings.logging.level, logging.INFO)
    log_format = fmt or settings.logging.format
    if log_format not in _RENDERERS:
        log_format = "console"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(root_level)

    alarms_logger = logging.getLogger(ALARMS_LOGGER)
    alarms_logger.setLevel(
        _to_level(alarms_level or settings.logging.alarms_level, logging.NOTSET)
    )
