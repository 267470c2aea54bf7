"""AlarmManager — alarm registry, mutation funnel, and test-session coordinator."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable, Iterable
from types import TracebackType

import structlog

from src.alarms import messages
from src.alarms.alarm import Alarm
from src.alarms.dispatch_queue import CanDequeueFn, DequeuedCallback, DispatchQueue
from src.alarms.exceptions import (
    AlarmMessageError,
    AlarmNotFoundError,
    AlarmRegistrationError,
    AlarmTestError,
    DuplicateAlarmError,
    InvalidAlarmStateError,
)
from src.alarms.messages import AlarmSnapshot, Message
from src.alarms.types import (
    CODE_CONNECTING,
    CODE_START_TEST,
    NO_CODE,
    AlarmRaiser,
    AlarmState,
    is_raising_state,
)
from src.core.config import AlarmsConfig

logger = structlog.stdlib.get_logger()

# "Changed" handlers run in-line with the mutation; they must be synchronous.
AlarmChangedCallback = Callable[[Alarm], None]


class AlarmManager:
    """Owns every registered alarm and raiser and funnels all state changes.

    Every effective change made through ``update_alarm`` (and the wrappers
    built on it) is delivered twice:

    - synchronously to the ``on_changed`` callbacks, before the mutating
      call returns, and
    - later, through the dispatch queue, to the ``on_dequeued`` callbacks
      once the drain loop (``run`` / ``start``) picks it up.

    Test sessions are exclusive across the registry and only notify the
    "changed" channel.

    The manager is not thread-safe.  It binds to the first thread that
    mutates it (normally the event loop thread) and rejects mutations from
    any other thread.

    Usage::

        manager = AlarmManager()
        manager.on_changed(show_on_panel)
        manager.on_dequeued(forward_to_remote)
        manager.add_raiser(engine_monitor)

        async with manager:
            manager.raise_alarm("pump-temp", AlarmState.SEVERE, "overheat", 7)
            ...
    """

    def __init__(self, config: AlarmsConfig | None = None) -> None:
        from src.core.config import get_settings

        self._config = config or get_settings().alarms
        self._alarms: dict[str, Alarm] = {}
        self._raisers: list[AlarmRaiser] = []
        self._queue: DispatchQueue[Alarm] = DispatchQueue(
            poll_interval_secs=self._config.drain_poll_interval_secs,
        )
        self._changed_callbacks: list[AlarmChangedCallback] = []
        self._alarm_under_test: Alarm | None = None
        # Bumped whenever a test session starts or ends; timers scheduled by
        # run_test only fire end_test while their token is still current.
        self._test_token = 0
        self._test_timer: asyncio.TimerHandle | None = None
        self._owner_thread: int | None = None
        self._cancel: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    # ── Properties ────────────────────────────────────────────────

    @property
    def alarms(self) -> list[Alarm]:
        return list(self._alarms.values())

    @property
    def raisers(self) -> list[AlarmRaiser]:
        return list(self._raisers)

    @property
    def alarm_states(self) -> dict[str, AlarmState]:
        return {a.id: a.state for a in self._alarms.values()}

    @property
    def alarm_messages(self) -> dict[str, str]:
        return {a.id: a.message for a in self._alarms.values()}

    @property
    def alarm_codes(self) -> dict[str, int]:
        return {a.id: a.code for a in self._alarms.values()}

    @property
    def is_alarm_raised(self) -> bool:
        """Whether any registered alarm is currently raised."""
        return any(a.is_raised for a in self._alarms.values())

    @property
    def alarm_under_test(self) -> Alarm | None:
        return self._alarm_under_test

    @property
    def is_testing(self) -> bool:
        return self._alarm_under_test is not None and self._alarm_under_test.is_testing

    @property
    def pending(self) -> int:
        """Number of changes waiting for the drain loop."""
        return len(self._queue)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── Notification channels ─────────────────────────────────────

    def on_changed(self, callback: AlarmChangedCallback) -> None:
        """Register a synchronous callback fired in-line on every change.

        Exceptions raised by the callback propagate to the mutating caller.
        """
        self._changed_callbacks.append(callback)

    def on_dequeued(self, callback: DequeuedCallback[Alarm]) -> None:
        """Register a (sync or async) callback fired by the drain loop."""
        self._queue.on_dequeued(callback)

    def _notify_changed(self, alarm: Alarm) -> None:
        for cb in self._changed_callbacks:
            cb(alarm)

    # ── Registry ──────────────────────────────────────────────────

    def register_alarm(
        self,
        raiser: AlarmRaiser,
        alarm_id: str,
        name: str | None = None,
        source: str | None = None,
        can_disable: bool = True,
    ) -> Alarm:
        """Create a DISCONNECTED alarm owned by *raiser*.

        The alarm keeps only a weak reference to *raiser*; the raiser does
        not have to be added to this manager first.

        Raises:
            AlarmRegistrationError: *raiser* or *alarm_id* is missing.
            DuplicateAlarmError: *alarm_id* is already registered.
        """
        self._check_owner()
        if raiser is None:
            raise AlarmRegistrationError("Raiser cannot be None")
        if not alarm_id:
            raise AlarmRegistrationError("Alarm ID cannot be empty")
        if alarm_id in self._alarms:
            raise DuplicateAlarmError(f"There is already an alarm with ID {alarm_id}")

        alarm = Alarm(alarm_id, name=name, source=source, can_disable=can_disable)
        alarm._bind_raiser(raiser)
        self._alarms[alarm_id] = alarm
        logger.info(
            "alarm_registered",
            alarm_id=alarm_id,
            raiser=type(raiser).__name__,
            source=source,
        )
        return alarm

    def deregister_alarm(self, alarm_id: str) -> None:
        """Lower the alarm, then remove it.  Unknown IDs are ignored."""
        self._check_owner()
        alarm = self._alarms.get(alarm_id)
        if alarm is None:
            return

        if alarm.is_disabled:
            # A disabled alarm only accepts DISCONNECTED.
            self.enable_alarm(alarm_id)
        if alarm is self._alarm_under_test:
            self.end_test()
        self.lower_alarm(alarm_id, f"Deregistering alarm {alarm_id}")

        del self._alarms[alarm_id]
        logger.info("alarm_deregistered", alarm_id=alarm_id)

    def add_raiser(self, raiser: AlarmRaiser) -> None:
        """Add *raiser* and let it register its alarms.  Idempotent."""
        self._check_owner()
        if self._has_raiser(raiser):
            return
        self._raisers.append(raiser)
        raiser.alarm_manager = self
        raiser.register_alarms()
        logger.info("alarm_raiser_added", raiser=type(raiser).__name__)

    def add_raisers(self, items: Iterable[object]) -> None:
        """Add every item that implements ``AlarmRaiser``; skip the rest."""
        for item in items:
            if isinstance(item, AlarmRaiser):
                self.add_raiser(item)

    def remove_raisers(self) -> None:
        """Deregister every alarm, then forget every raiser."""
        self._check_owner()
        for alarm_id in list(self._alarms):
            self.deregister_alarm(alarm_id)
        self._raisers.clear()
        logger.info("alarm_raisers_removed")

    def get_alarm(self, alarm_id: str, required: bool = False) -> Alarm | None:
        """Look up an alarm; raise AlarmNotFoundError if *required* and missing."""
        alarm = self._alarms.get(alarm_id)
        if alarm is None and required:
            raise AlarmNotFoundError(f"Alarm {alarm_id} not found")
        return alarm

    def has_alarm(self, alarm_id: str) -> bool:
        return alarm_id in self._alarms

    def has_alarm_with_state(self, state: AlarmState) -> bool:
        return any(a.state == state for a in self._alarms.values())

    def is_alarm_disabled(self, alarm_id: str) -> bool:
        return self._require(alarm_id).is_disabled

    def get_raiser(self, alarm_id: str) -> AlarmRaiser | None:
        """Resolve the raiser that registered *alarm_id*, if still alive."""
        return self._require(alarm_id).raiser

    # ── Mutation ──────────────────────────────────────────────────

    def update_alarm(
        self,
        alarm_id: str,
        state: AlarmState,
        message: str | None = None,
        code: int = NO_CODE,
    ) -> Alarm:
        """Apply a state change and notify both channels if anything changed.

        Raises:
            AlarmNotFoundError: unknown *alarm_id*.
            AlarmTransitionError: the alarm's policy forbids *state*.
        """
        self._check_owner()
        alarm = self._require(alarm_id)
        changed = alarm.update(state, message, code)

        if changed:
            logger.debug(
                "alarm_changed",
                alarm_id=alarm_id,
                state=alarm.state.value,
                code=alarm.code,
            )
            self._queue.enqueue(alarm)
            self._notify_changed(alarm)

        return alarm

    def raise_alarm(
        self,
        alarm_id: str,
        state: AlarmState,
        message: str,
        code: int = NO_CODE,
    ) -> Alarm:
        """Raise an alarm to a state in MINOR..CRITICAL."""
        if not is_raising_state(state):
            raise InvalidAlarmStateError(
                f"Alarm state {state} is not valid for raising an alarm"
            )
        return self.update_alarm(alarm_id, state, message, code)

    def lower_alarm(self, alarm_id: str, message: str, code: int = NO_CODE) -> Alarm:
        return self.update_alarm(alarm_id, AlarmState.LOWERED, message, code)

    def enable_alarm(self, alarm_id: str) -> Alarm:
        return self.update_alarm(alarm_id, AlarmState.DISCONNECTED)

    def disable_alarm(self, alarm_id: str) -> Alarm:
        return self.update_alarm(alarm_id, AlarmState.DISABLED)

    # ── Test sessions ─────────────────────────────────────────────

    def start_test(
        self,
        alarm_id: str,
        state: AlarmState,
        message: str | None = None,
        code: int = CODE_START_TEST,
    ) -> Alarm:
        """Put one alarm into test mode at *state*.

        Only one alarm may be under test at a time.  If anything fails once
        the session has begun, the session is ended and the under-test slot
        cleared before the failure is re-raised as AlarmTestError.

        Raises:
            AlarmTestError: another alarm is under test, the target is
                already raised or disconnected, or starting the test failed.
            AlarmNotFoundError: unknown *alarm_id*.
        """
        self._check_owner()
        if self._alarm_under_test is not None:
            raise AlarmTestError(
                f"Cannot test {alarm_id} as {self._alarm_under_test.id} is already being tested",
                alarm_id=alarm_id,
            )

        alarm = self._require(alarm_id)
        if alarm.is_raised:
            raise AlarmTestError(f"Alarm {alarm_id} already raised", alarm_id=alarm_id)
        if alarm.state == AlarmState.DISCONNECTED:
            raise AlarmTestError(f"Alarm {alarm_id} is disconnected", alarm_id=alarm_id)

        self._cancel_test_timer()
        self._test_token += 1
        try:
            self._alarm_under_test = alarm
            changed = alarm.start_test(
                state,
                message if message is not None else self._config.start_test_message,
                code,
            )
            if changed:
                self._notify_changed(alarm)
        except Exception as e:
            self._rollback_test(alarm)
            raise AlarmTestError(
                f"Starting test failed for alarm {alarm_id}: {e}",
                alarm_id=alarm_id,
            ) from e

        logger.info("alarm_test_started", alarm_id=alarm_id, state=state.value)
        return alarm

    def end_test(self) -> Alarm | None:
        """End the current test session, if any, and lower the alarm."""
        self._check_owner()
        alarm = self._alarm_under_test
        if alarm is None:
            return None

        self._alarm_under_test = None
        self._test_token += 1
        self._cancel_test_timer()

        changed = alarm.end_test(self._config.end_test_message)
        if changed:
            self._notify_changed(alarm)

        logger.info("alarm_test_ended", alarm_id=alarm.id)
        return alarm

    def run_test(
        self,
        alarm_id: str,
        state: AlarmState,
        message: str | None = None,
        duration: float | None = None,
        code: int = CODE_START_TEST,
    ) -> Alarm:
        """Start a test and end it automatically after *duration* seconds.

        Must be called from a running event loop.  The timer is bound to
        this session: ending the test early, or starting another one, turns
        the pending timer into a no-op.
        """
        loop = asyncio.get_running_loop()
        delay = duration if duration is not None else self._config.default_test_duration_secs

        alarm = self.start_test(alarm_id, state, message, code)
        self._test_timer = loop.call_later(delay, self._end_test_if_current, self._test_token)
        return alarm

    def _end_test_if_current(self, token: int) -> None:
        self._test_timer = None
        if token != self._test_token:
            logger.debug("stale_test_timer_ignored", token=token)
            return
        try:
            self.end_test()
        except Exception:
            logger.exception("alarm_test_timer_error")

    def _rollback_test(self, alarm: Alarm) -> None:
        self._alarm_under_test = None
        self._test_token += 1
        try:
            if alarm.end_test(self._config.end_test_message):
                self._notify_changed(alarm)
        except Exception:
            logger.exception("alarm_test_rollback_error", alarm_id=alarm.id)

    def _cancel_test_timer(self) -> None:
        if self._test_timer is not None:
            self._test_timer.cancel()
            self._test_timer = None

    # ── Connectivity ──────────────────────────────────────────────

    def connect(self, raiser: AlarmRaiser | None = None) -> None:
        """Lower every disconnected alarm (optionally only *raiser*'s)."""
        owned = self._owned_by(raiser)
        self._connect_where(owned)

    def connect_source(self, source: str) -> None:
        """Lower every disconnected alarm whose source is *source*."""
        self._connect_where(lambda a: a.source == source)

    def disconnect(self, raiser: AlarmRaiser | None = None) -> None:
        """Disconnect every connected alarm (optionally only *raiser*'s)."""
        owned = self._owned_by(raiser)
        self._disconnect_where(owned)

    def disconnect_source(self, source: str) -> None:
        """Disconnect every connected alarm whose source is *source*."""
        self._disconnect_where(lambda a: a.source == source)

    def _owned_by(self, raiser: AlarmRaiser | None) -> Callable[[Alarm], bool]:
        if raiser is None:
            return lambda a: True
        return lambda a: a.raiser is raiser

    def _connect_where(self, predicate: Callable[[Alarm], bool]) -> None:
        for alarm in list(self._alarms.values()):
            if not alarm.is_connected and not alarm.is_disabled and predicate(alarm):
                self.lower_alarm(alarm.id, f"Connecting {alarm.id}", CODE_CONNECTING)

    def _disconnect_where(self, predicate: Callable[[Alarm], bool]) -> None:
        for alarm in list(self._alarms.values()):
            if alarm.is_connected and predicate(alarm):
                self.update_alarm(
                    alarm.id,
                    AlarmState.DISCONNECTED,
                    f"Disconnecting {alarm.id}",
                    NO_CODE,
                )

    # ── Remote exchange ───────────────────────────────────────────

    def update_from_alert_message(self, message: Message) -> Alarm:
        """Apply the state and message carried by an ALERT message.

        Raises:
            AlarmMessageError: wrong message type, missing payload, or the
                alarm is not registered here.
        """
        snapshot = messages.read_alert(message)
        if not self.has_alarm(snapshot.id):
            raise AlarmMessageError(
                f"Alarm manager does not have an alarm with ID {snapshot.id}"
            )
        return self.update_alarm(snapshot.id, snapshot.state, snapshot.message)

    def create_alert_message(self, alarm: Alarm, target: str | None = None) -> Message:
        return messages.create_alert_message(alarm, target)

    def is_alert_message(self, message: Message) -> bool:
        return messages.is_alert_message(message)

    def create_list_alarms_message(self, target: str) -> Message:
        return messages.create_list_alarms_message(target)

    def add_alarms_list_to_message(self, message: Message) -> None:
        messages.add_alarms_list(message, self._alarms.values())

    def update_from_list_alarms_response(self, response: Message) -> list[AlarmSnapshot]:
        """Apply every listed alarm that exists here; ignore the others.

        Returns every snapshot in the response, in order.
        """
        snapshots = messages.read_alarms_list(response)
        for snap in snapshots:
            if self.has_alarm(snap.id):
                self.update_alarm(snap.id, snap.state, snap.message)
        return snapshots

    # ── Drain loop lifecycle ──────────────────────────────────────

    async def run(
        self,
        cancel: asyncio.Event,
        can_dequeue: CanDequeueFn | None = None,
    ) -> None:
        """Drain queued changes until *cancel* is set."""
        await self._queue.run(cancel, can_dequeue)

    async def start(self, can_dequeue: CanDequeueFn | None = None) -> None:
        """Start the drain loop as a background task."""
        if self._task is not None:
            return
        self._cancel = asyncio.Event()
        self._task = asyncio.create_task(self.run(self._cancel, can_dequeue))
        logger.info("alarm_manager_started", alarms=len(self._alarms))

    async def stop(self) -> None:
        """Stop the drain loop and drop any pending test timer.

        Queued changes are not flushed.
        """
        self._test_token += 1
        self._cancel_test_timer()
        if self._cancel is not None:
            self._cancel.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("alarm_manager_stopped", pending=len(self._queue))

    async def __aenter__(self) -> AlarmManager:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    # ── Internal ──────────────────────────────────────────────────

    def _require(self, alarm_id: str) -> Alarm:
        alarm = self._alarms.get(alarm_id)
        if alarm is None:
            raise AlarmNotFoundError(f"Alarm {alarm_id} not found")
        return alarm

    def _has_raiser(self, raiser: AlarmRaiser) -> bool:
        return any(r is raiser for r in self._raisers)

    def _check_owner(self) -> None:
        ident = threading.get_ident()
        if self._owner_thread is None:
            self._owner_thread = ident
        elif self._owner_thread != ident:
            raise RuntimeError(
                "AlarmManager mutators must run on the thread that first used it"
            )
