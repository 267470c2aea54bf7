"""Shared fixtures for alarm manager tests."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from src.alarms.alarm import Alarm
from src.alarms.manager import AlarmManager
from src.core.config import AlarmsConfig


class FakeRaiser:
    """In-memory raiser that registers a fixed list of alarm IDs."""

    def __init__(
        self,
        *alarm_ids: str,
        source: str | None = None,
        can_disable: bool = True,
    ) -> None:
        self.alarm_manager: AlarmManager | None = None
        self.alarm_ids = alarm_ids
        self.source = source
        self.can_disable = can_disable
        self.register_calls = 0

    def register_alarms(self) -> None:
        self.register_calls += 1
        assert self.alarm_manager is not None
        for alarm_id in self.alarm_ids:
            self.alarm_manager.register_alarm(
                self,
                alarm_id,
                source=self.source,
                can_disable=self.can_disable,
            )


ManagerFactory = Callable[[], AlarmManager]


def fast_config(**overrides: object) -> AlarmsConfig:
    defaults: dict[str, object] = {
        "drain_poll_interval_secs": 0.01,
        "default_test_duration_secs": 0.05,
    }
    defaults.update(overrides)
    return AlarmsConfig(**defaults)  # type: ignore[arg-type]


@pytest.fixture()
def make_manager() -> ManagerFactory:
    return lambda: AlarmManager(fast_config())


@pytest.fixture()
def make_raiser() -> type[FakeRaiser]:
    return FakeRaiser


@pytest.fixture()
def raiser() -> FakeRaiser:
    return FakeRaiser("pump-temp", "valve-1", source="engine")


@pytest.fixture()
def manager(raiser: FakeRaiser) -> AlarmManager:
    """Manager with ``pump-temp`` and ``valve-1`` registered and LOWERED."""
    mgr = AlarmManager(fast_config())
    mgr.add_raiser(raiser)
    mgr.connect()
    # Drop the connection changes so tests start with an empty queue.
    mgr._queue.clear()
    return mgr


@pytest.fixture()
def changes(manager: AlarmManager) -> list[Alarm]:
    """Records every synchronous "changed" notification."""
    received: list[Alarm] = []
    manager.on_changed(received.append)
    return received
