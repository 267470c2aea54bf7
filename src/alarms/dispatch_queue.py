"""DispatchQueue — unbounded FIFO drained by a cancellable background loop."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

import structlog

logger = structlog.stdlib.get_logger()

T = TypeVar("T")

# Callback types: dequeued handlers may be sync or async.
DequeuedCallback = Callable[[T], Awaitable[None] | None]
CanDequeueFn = Callable[[], bool]


def _always() -> bool:
    return True


class DispatchQueue(Generic[T]):
    """FIFO of live item references consumed by a single drain loop.

    Items are neither copied nor coalesced: an item enqueued twice is
    delivered twice, and by the time it is delivered it may already reflect
    a later state than the one that caused the enqueue.

    Delivery failures are logged and counted; they never stop the loop.

    Usage::

        queue: DispatchQueue[Alarm] = DispatchQueue()
        queue.on_dequeued(forward)
        cancel = asyncio.Event()
        task = asyncio.create_task(queue.run(cancel))
        queue.enqueue(alarm)
        ...
        cancel.set()
        await task
    """

    def __init__(self, poll_interval_secs: float = 0.1) -> None:
        self._items: deque[T] = deque()
        self._poll_interval_secs = poll_interval_secs
        self._callbacks: list[DequeuedCallback[T]] = []
        self._not_empty = asyncio.Event()
        self._running = False
        self._error_count = 0

    def __len__(self) -> int:
        return len(self._items)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def error_count(self) -> int:
        """Number of failed deliveries and gate checks so far."""
        return self._error_count

    def on_dequeued(self, callback: DequeuedCallback[T]) -> None:
        """Register a callback for dequeued items."""
        self._callbacks.append(callback)

    def enqueue(self, item: T) -> None:
        self._items.append(item)
        self._not_empty.set()

    def clear(self) -> None:
        self._items.clear()
        self._not_empty.clear()

    async def run(
        self,
        cancel: asyncio.Event,
        can_dequeue: CanDequeueFn | None = None,
    ) -> None:
        """Drain the queue until *cancel* is set.

        Each iteration pops the head item and emits it, unless the queue is
        empty or *can_dequeue* returns False, in which case the loop waits
        up to the poll interval and checks again.  Items still queued when
        *cancel* is set stay queued.
        """
        gate = can_dequeue or _always
        self._running = True
        logger.debug("dispatch_queue_started", pending=len(self._items))
        try:
            while not cancel.is_set():
                if not self._items:
                    self._not_empty.clear()
                    await self._wait_for_items()
                    continue

                if not self._gate_open(gate):
                    await asyncio.sleep(self._poll_interval_secs)
                    continue

                item = self._items.popleft()
                await self._emit(item)
                # Yield so producers and cancellers get a turn between items.
                await asyncio.sleep(0)
        finally:
            self._running = False
            logger.debug("dispatch_queue_stopped", pending=len(self._items))

    # ── Internal ──────────────────────────────────────────────────

    async def _wait_for_items(self) -> None:
        try:
            await asyncio.wait_for(self._not_empty.wait(), self._poll_interval_secs)
        except TimeoutError:
            pass

    def _gate_open(self, gate: CanDequeueFn) -> bool:
        try:
            return bool(gate())
        except Exception:
            self._error_count += 1
            logger.exception("dispatch_queue_gate_error", error_count=self._error_count)
            return False

    async def _emit(self, item: T) -> None:
        """Dispatch a dequeued item to all registered callbacks."""
        for cb in self._callbacks:
            try:
                result = cb(item)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                self._error_count += 1
                logger.exception(
                    "dequeued_callback_error",
                    item=repr(item),
                    error_count=self._error_count,
                )
