"""Core module — config and logging."""

from src.core.config import (
    AlarmsConfig,
    DemoConfig,
    LoggingConfig,
    Settings,
    get_settings,
    load_settings,
    reset_settings,
)
from src.core.logging import setup_logging

__all__ = [
    "AlarmsConfig",
    "DemoConfig",
    "LoggingConfig",
    "Settings",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
