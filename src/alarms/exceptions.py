"""Exception hierarchy for the alarm manager."""

from __future__ import annotations


class AlarmError(Exception):
    """Base exception for all alarm errors."""


class AlarmNotFoundError(AlarmError, KeyError):
    """No alarm is registered under the requested ID."""

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message.
        return str(self.args[0]) if self.args else ""


class AlarmRegistrationError(AlarmError, ValueError):
    """Registration was attempted without a raiser or an alarm ID."""


class DuplicateAlarmError(AlarmRegistrationError):
    """An alarm with the same ID is already registered."""


class InvalidAlarmStateError(AlarmError, ValueError):
    """The requested state is not a valid target for the operation."""


class AlarmTransitionError(AlarmError):
    """The alarm's policy forbids the requested state change."""


class AlarmTestError(AlarmError):
    """A test session could not be started."""

    def __init__(self, message: str, alarm_id: str | None = None) -> None:
        super().__init__(message)
        self.alarm_id = alarm_id


class AlarmMessageError(AlarmError):
    """A remote alarm message is malformed or refers to an unknown alarm."""
