#!/usr/bin/env python3
"""Demo entrypoint — runs an AlarmManager fed by a simulated raiser.

Usage::

    # Run with default config
    python scripts/run.py

    # Custom config file
    python scripts/run.py --config config/settings.yaml

    # Override log level
    python scripts/run.py --log-level DEBUG

    # Only the alarm manager at DEBUG
    python scripts/run.py --alarms-log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import random
import signal
import sys

import structlog

from src.alarms import (
    Alarm,
    AlarmError,
    AlarmManager,
    AlarmState,
    random_raised_state,
)
from src.core.config import DemoConfig, load_settings
from src.core.logging import setup_logging

logger = structlog.get_logger(__name__)


class SimulatedRaiser:
    """Raiser that owns a fixed set of alarms and flips them at random."""

    def __init__(self, config: DemoConfig) -> None:
        self.alarm_manager: AlarmManager | None = None
        self._config = config

    def register_alarms(self) -> None:
        assert self.alarm_manager is not None
        for alarm_id in self._config.alarm_ids:
            self.alarm_manager.register_alarm(
                self,
                alarm_id,
                name=alarm_id.replace("-", " ").title(),
                source=self._config.source,
            )

    async def simulate(self, stop_event: asyncio.Event) -> None:
        assert self.alarm_manager is not None
        manager = self.alarm_manager
        while not stop_event.is_set():
            alarm_id = random.choice(self._config.alarm_ids)
            alarm = manager.get_alarm(alarm_id)
            try:
                if alarm is None or alarm.testing:
                    pass
                elif alarm.is_raised:
                    manager.lower_alarm(alarm_id, "Back to normal")
                else:
                    manager.raise_alarm(
                        alarm_id,
                        random_raised_state(),
                        "Simulated fault",
                        code=random.randint(10, 99),
                    )
            except AlarmError:
                logger.exception("simulated_update_failed", alarm_id=alarm_id)
            try:
                await asyncio.wait_for(
                    stop_event.wait(), timeout=self._config.raise_interval_secs,
                )
            except TimeoutError:
                pass


def _log_changed(alarm: Alarm) -> None:
    logger.info(
        "alarm_changed",
        alarm_id=alarm.id,
        state=alarm.state.value,
        message=alarm.message,
        code=alarm.code,
        testing=alarm.testing,
    )


async def _log_dequeued(alarm: Alarm) -> None:
    logger.info("alarm_dequeued", alarm_id=alarm.id, state=alarm.state.value)


async def run(args: argparse.Namespace) -> int:
    """Start the manager and the simulator and run until interrupted."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level, alarms_level=args.alarms_log_level)

    if not settings.demo.alarm_ids:
        logger.error("no_demo_alarms")
        print("No alarms configured under demo.alarm_ids.", file=sys.stderr)
        return 1

    manager = AlarmManager(settings.alarms)
    manager.on_changed(_log_changed)
    manager.on_dequeued(_log_dequeued)

    raiser = SimulatedRaiser(settings.demo)
    manager.add_raiser(raiser)
    manager.connect(raiser)

    await manager.start()
    manager.run_test(
        settings.demo.alarm_ids[0],
        AlarmState.CRITICAL,
        "Demo drill",
    )

    # ── Wait for shutdown signal ─────────────────────────────────
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    logger.info("alarm_demo_running", alarms=len(manager.alarms))
    try:
        await raiser.simulate(stop_event)
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    manager.end_test()
    manager.disconnect(raiser)
    await manager.stop()
    manager.remove_raisers()

    logger.info(
        "alarm_demo_stopped",
        undelivered=manager.pending,
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Alarm manager demo")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to YAML config (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override log level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "--alarms-log-level",
        default=None,
        help="Log level for the alarm manager only (e.g. DEBUG to see every change)",
    )
    args = parser.parse_args()

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
