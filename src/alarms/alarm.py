"""Alarm — a single named alarm state machine with a test-mode overlay."""

from __future__ import annotations

import datetime
import weakref

from src.alarms.exceptions import AlarmTransitionError, InvalidAlarmStateError
from src.alarms.messages import AlarmSnapshot
from src.alarms.types import (
    CODE_END_TEST,
    CODE_START_TEST,
    NO_CODE,
    AlarmRaiser,
    AlarmState,
    is_raising_state,
)


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class Alarm:
    """Tracks the severity state of one health indicator.

    State, message, code, and the history timestamps are read-only from
    outside; they change only through ``update`` and the helpers built on
    it.  Owners should go through ``AlarmManager`` so changes are validated
    and notified.

    History bookkeeping (``last_raised`` / ``last_lowered`` /
    ``last_disabled``) happens only when the state actually changes and the
    alarm is not in test mode.
    """

    def __init__(
        self,
        alarm_id: str,
        name: str | None = None,
        source: str | None = None,
        can_disable: bool = True,
    ) -> None:
        self._id = alarm_id
        self.name = name
        self.source = source
        self.can_disable = can_disable
        self._state = AlarmState.DISCONNECTED
        self._message = ""
        self._code = NO_CODE
        self._testing = False
        self._raiser_ref: weakref.ref[AlarmRaiser] | None = None
        self._last_raised: datetime.datetime | None = None
        self._last_lowered: datetime.datetime | None = None
        self._last_disabled: datetime.datetime | None = None

    def __repr__(self) -> str:
        return f"Alarm(id={self._id!r}, state={self._state}, code={self._code})"

    # ── Properties ────────────────────────────────────────────────

    @property
    def id(self) -> str:
        return self._id

    @property
    def state(self) -> AlarmState:
        return self._state

    @property
    def message(self) -> str:
        return self._message

    @property
    def code(self) -> int:
        return self._code

    @property
    def testing(self) -> bool:
        return self._testing

    @property
    def raiser(self) -> AlarmRaiser | None:
        """The raiser that registered this alarm, if it is still alive.

        Only a weak reference is held; the alarm never keeps its raiser alive.
        """
        if self._raiser_ref is None:
            return None
        return self._raiser_ref()

    @property
    def last_raised(self) -> datetime.datetime | None:
        return self._last_raised

    @property
    def last_lowered(self) -> datetime.datetime | None:
        return self._last_lowered

    @property
    def last_disabled(self) -> datetime.datetime | None:
        return self._last_disabled

    @property
    def is_testing(self) -> bool:
        """Test flag set, or the code is a start/end-test sentinel."""
        return self._testing or self._code in (CODE_START_TEST, CODE_END_TEST)

    @property
    def is_lowered(self) -> bool:
        return self._state == AlarmState.LOWERED

    @property
    def is_disabled(self) -> bool:
        return self._state == AlarmState.DISABLED

    @property
    def is_connected(self) -> bool:
        return self._state != AlarmState.DISCONNECTED and not self.is_disabled

    @property
    def is_raised(self) -> bool:
        return is_raising_state(self._state)

    # ── State machine ─────────────────────────────────────────────

    def update(
        self,
        state: AlarmState,
        message: str | None = None,
        code: int = NO_CODE,
    ) -> bool:
        """Apply *state*, *message* and *code*.

        Message and code are always overwritten.  Returns True if the state
        or the code differs from the previous value.

        Raises:
            AlarmTransitionError: the alarm is disabled and *state* is not
                DISCONNECTED, or *state* is DISABLED and the alarm cannot be
                disabled.  Nothing is applied in that case.
        """
        self._check_transition(state)

        previous = self._state
        changed = state != previous or code != self._code

        self._state = state
        self._message = message if message is not None else ""
        self._code = code

        if state != previous and not self._testing:
            self._record_history(previous)
        return changed

    def raise_to(self, state: AlarmState, message: str, code: int = NO_CODE) -> bool:
        """Raise the alarm to a state in MINOR..CRITICAL."""
        if not is_raising_state(state):
            raise InvalidAlarmStateError(
                f"Alarm state {state} is not valid for raising an alarm"
            )
        return self.update(state, message, code)

    def lower(self, message: str, code: int = NO_CODE) -> bool:
        return self.update(AlarmState.LOWERED, message, code)

    def disconnect(self, message: str, code: int = NO_CODE) -> bool:
        return self.update(AlarmState.DISCONNECTED, message, code)

    def enable(self, enable: bool = True) -> None:
        """Enable (DISABLED → DISCONNECTED) or disable the alarm.

        No-op if the alarm is already in the requested condition.
        """
        if enable:
            if self.is_disabled:
                self.update(AlarmState.DISCONNECTED)
        elif not self.is_disabled:
            self.update(AlarmState.DISABLED)

    def disable(self) -> None:
        self.enable(False)

    def start_test(
        self,
        state: AlarmState,
        message: str = "Start testing",
        code: int = CODE_START_TEST,
    ) -> bool:
        self._testing = True
        return self.raise_to(state, message, code)

    def end_test(self, message: str = "End testing", code: int = CODE_END_TEST) -> bool:
        """Leave test mode and lower the alarm.

        An alarm disabled while under test stays DISABLED; only the test
        flag is cleared.
        """
        if self.is_disabled:
            self._testing = False
            return False
        # Lowered while still flagged so the drill leaves no history.
        changed = self.lower(message, code)
        self._testing = False
        return changed

    def to_snapshot(self) -> AlarmSnapshot:
        return AlarmSnapshot(
            id=self._id,
            name=self.name,
            source=self.source,
            state=self._state,
            message=self._message,
        )

    # ── Internal ──────────────────────────────────────────────────

    def _bind_raiser(self, raiser: AlarmRaiser) -> None:
        self._raiser_ref = weakref.ref(raiser)

    def _check_transition(self, state: AlarmState) -> None:
        if self.is_disabled and state != AlarmState.DISCONNECTED:
            raise AlarmTransitionError(
                f"Alarm {self._id} is disabled, cannot set state directly to {state}"
            )
        if state == AlarmState.DISABLED and not self.can_disable:
            raise AlarmTransitionError(f"Alarm {self._id} cannot be disabled")

    def _record_history(self, previous: AlarmState) -> None:
        if self.is_raised:
            self._last_raised = _now()
            self._last_lowered = None
        elif self.is_lowered and is_raising_state(previous):
            self._last_lowered = _now()
        elif self.is_disabled:
            self._last_disabled = _now()
