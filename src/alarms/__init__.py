"""Alarm state tracking — alarms, raisers, manager, and the dispatch queue."""

from src.alarms.alarm import Alarm
from src.alarms.dispatch_queue import DispatchQueue
from src.alarms.exceptions import (
    AlarmError,
    AlarmMessageError,
    AlarmNotFoundError,
    AlarmRegistrationError,
    AlarmTestError,
    AlarmTransitionError,
    DuplicateAlarmError,
    InvalidAlarmStateError,
)
from src.alarms.manager import AlarmChangedCallback, AlarmManager
from src.alarms.messages import AlarmSnapshot, Message, MessageType
from src.alarms.types import (
    CODE_CONNECTING,
    CODE_END_TEST,
    CODE_START_TEST,
    NO_CODE,
    STATE_RANK,
    AlarmRaiser,
    AlarmState,
    is_raising_state,
    random_raised_state,
)

__all__ = [
    "CODE_CONNECTING",
    "CODE_END_TEST",
    "CODE_START_TEST",
    "NO_CODE",
    "STATE_RANK",
    "Alarm",
    "AlarmChangedCallback",
    "AlarmError",
    "AlarmManager",
    "AlarmMessageError",
    "AlarmNotFoundError",
    "AlarmRaiser",
    "AlarmRegistrationError",
    "AlarmSnapshot",
    "AlarmState",
    "AlarmTestError",
    "AlarmTransitionError",
    "DispatchQueue",
    "DuplicateAlarmError",
    "InvalidAlarmStateError",
    "Message",
    "MessageType",
    "is_raising_state",
    "random_raised_state",
]
