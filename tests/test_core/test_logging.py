"""Tests for src/core/logging.py."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog
import yaml

from src.core.config import load_settings, reset_settings
from src.core.logging import ALARMS_LOGGER, setup_logging


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    alarms = logging.getLogger(ALARMS_LOGGER)
    handlers = list(root.handlers)
    root_level, alarms_level = root.level, alarms.level
    reset_settings()
    yield
    root.handlers[:] = handlers
    root.setLevel(root_level)
    alarms.setLevel(alarms_level)
    structlog.reset_defaults()
    reset_settings()


def _renderer() -> object:
    handler = logging.getLogger().handlers[0]
    formatter = handler.formatter
    assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
    return formatter.processors[-1]


class TestSetupLogging:
    def test_level_override(self) -> None:
        setup_logging(level="DEBUG", fmt="json")
        assert logging.getLogger().level == logging.DEBUG

    def test_single_handler(self) -> None:
        setup_logging(level="INFO", fmt="json")
        setup_logging(level="INFO", fmt="json")
        assert len(logging.getLogger().handlers) == 1

    def test_json_renderer(self) -> None:
        setup_logging(level="INFO", fmt="json")
        assert isinstance(_renderer(), structlog.processors.JSONRenderer)

    def test_unknown_format_falls_back_to_console(self) -> None:
        setup_logging(level="INFO", fmt="xml")
        assert isinstance(_renderer(), structlog.dev.ConsoleRenderer)

    def test_unknown_level_falls_back_to_info(self) -> None:
        setup_logging(level="chatty", fmt="json")
        assert logging.getLogger().level == logging.INFO


class TestAlarmsLevel:
    def test_alarm_loggers_follow_root_by_default(self) -> None:
        setup_logging(level="WARNING", fmt="json")
        assert logging.getLogger(ALARMS_LOGGER).level == logging.NOTSET
        manager_logger = logging.getLogger("src.alarms.manager")
        assert manager_logger.getEffectiveLevel() == logging.WARNING

    def test_alarms_level_override(self) -> None:
        setup_logging(level="WARNING", fmt="json", alarms_level="DEBUG")
        manager_logger = logging.getLogger("src.alarms.manager")
        assert manager_logger.isEnabledFor(logging.DEBUG)
        assert not logging.getLogger("src.core").isEnabledFor(logging.INFO)

    def test_alarms_level_from_config(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml.dump({"logging": {"alarms_level": "ERROR"}}))
        load_settings(config_file)

        setup_logging(level="INFO", fmt="json")
        assert logging.getLogger(ALARMS_LOGGER).level == logging.ERROR

    def test_reset_between_calls(self) -> None:
        setup_logging(level="INFO", fmt="json", alarms_level="DEBUG")
        setup_logging(level="INFO", fmt="json")
        assert logging.getLogger(ALARMS_LOGGER).level == logging.NOTSET
