"""Alarm states, reserved codes, and the raiser capability."""

from __future__ import annotations

import random
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from src.alarms.manager import AlarmManager

# Reserved alarm codes.
NO_CODE = 0
CODE_START_TEST = 1
CODE_END_TEST = 2
CODE_CONNECTING = 3


class AlarmState(StrEnum):
    """Alarm state, listed from least to most severe."""

    DISABLED = "DISABLED"
    DISCONNECTED = "DISCONNECTED"
    LOWERED = "LOWERED"
    MINOR = "MINOR"
    MODERATE = "MODERATE"
    SEVERE = "SEVERE"
    CRITICAL = "CRITICAL"


# Severity rank per state. Comparisons go through this table rather than
# enum declaration order.
STATE_RANK: dict[AlarmState, int] = {
    AlarmState.DISABLED: 0,
    AlarmState.DISCONNECTED: 1,
    AlarmState.LOWERED: 2,
    AlarmState.MINOR: 3,
    AlarmState.MODERATE: 4,
    AlarmState.SEVERE: 5,
    AlarmState.CRITICAL: 6,
}

RAISED_STATES: tuple[AlarmState, ...] = tuple(
    sorted(
        (s for s, rank in STATE_RANK.items() if rank > STATE_RANK[AlarmState.LOWERED]),
        key=STATE_RANK.__getitem__,
    )
)


def is_raising_state(state: AlarmState) -> bool:
    """Return True if *state* is more severe than LOWERED."""
    return STATE_RANK[state] > STATE_RANK[AlarmState.LOWERED]


def random_raised_state() -> AlarmState:
    """Pick a random raised state (MINOR..CRITICAL), e.g. for simulators."""
    return random.choice(RAISED_STATES)


@runtime_checkable
class AlarmRaiser(Protocol):
    """Capability implemented by alarm producers.

    The manager sets ``alarm_manager`` when the raiser is added and then
    calls ``register_alarms()`` exactly once; the raiser is expected to call
    ``AlarmManager.register_alarm`` for every alarm it owns.
    """

    alarm_manager: AlarmManager | None

    def register_alarms(self) -> None: ...
