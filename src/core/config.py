"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class AlarmsConfig(BaseModel):
    """Alarm manager configuration."""

    drain_poll_interval_secs: float = Field(default=0.1, gt=0)
    default_test_duration_secs: float = Field(default=5.0, gt=0)
    start_test_message: str = "Start testing"
    end_test_message: str = "End testing"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"
    # Separate level for the src.alarms loggers; None follows the root level.
    alarms_level: str | None = None


class DemoConfig(BaseModel):
    """Simulated raiser used by ``scripts/run.py``."""

    raise_interval_secs: float = 2.0
    alarm_ids: list[str] = ["pump-temp", "valve-1", "bilge-level"]
    source: str = "demo"


class Settings(BaseModel):
    """Root settings container."""

    alarms: AlarmsConfig = AlarmsConfig()
    logging: LoggingConfig = LoggingConfig()
    demo: DemoConfig = DemoConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
