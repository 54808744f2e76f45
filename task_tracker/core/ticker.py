"""
Task Tracker — Reset Ticker.

A small polling loop that, once per interval:
- re-evaluates the reset boundary (applying a reset when one is due),
- computes the time remaining until the next boundary,
- pushes a TickEvent to every subscriber.

The countdown itself is a pure function on the service; this ticker is only
the push-based subscription point for adapters that want updates. It must be
stopped on teardown so no recurring task is leaked.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from task_tracker.core.tracker_service import TrackerService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TickEvent:
    now: datetime
    remaining: timedelta
    reset_applied: bool


TickListener = Callable[[TickEvent], Awaitable[None] | None]


class ResetTicker:
    """Cancelable once-per-interval boundary check with subscribers."""

    def __init__(
        self,
        service: TrackerService,
        interval_seconds: float = 1.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._service = service
        self._interval = max(0.01, float(interval_seconds))
        self._clock = clock
        self._listeners: list[TickListener] = []
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, listener: TickListener) -> Callable[[], None]:
        """Register a listener (sync or async). Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    async def tick(self) -> TickEvent:
        """Run a single tick and notify subscribers."""
        now = (self._clock or self._service.now)()
        reset_applied = self._service.tick(now)
        event = TickEvent(
            now=now,
            remaining=self._service.time_remaining_to_reset(now),
            reset_applied=reset_applied,
        )
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Tick listener %r failed", listener)
        return event

    async def _run(self) -> None:
        logger.debug("Reset ticker started (every %.2fs)", self._interval)
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("Reset tick failed")
            await asyncio.sleep(self._interval)

    def start(self) -> asyncio.Task[None]:
        """Start the loop on the running event loop (idempotent)."""
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(
                self._run(), name="reset-ticker",
            )
        return self._task

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug("Reset ticker stopped")

    async def __aenter__(self) -> ResetTicker:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
