"""
Task Tracker — Daily Reset Engine.

Clears the completion state of daily tasks once per reset day. The engine
keeps a marker (the key of the last reset day it handled); whenever the
clock's current key differs from the marker a reset is due. Running the
check again with the same key is a no-op.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from task_tracker.core.errors import ValidationError
from task_tracker.data.models import ResetTime, TaskCategory, TrackerSettings
from task_tracker.ports.storage_port import PersistenceError

if TYPE_CHECKING:
    from task_tracker.core.reset_clock import ResetClock
    from task_tracker.core.task_store import TaskStore
    from task_tracker.ports.storage_port import StoragePort

logger = logging.getLogger(__name__)

# Categories whose completion is cleared at every boundary.
RESET_ELIGIBLE = frozenset({TaskCategory.DAILY})


class ResetState(Enum):
    SETTLED = "settled"
    RESET_DUE = "reset_due"


class ResetEngine:
    """Owns the ResetTime and LastResetMarker and applies daily resets."""

    def __init__(
        self,
        store: TaskStore,
        clock: ResetClock,
        storage: StoragePort | None = None,
        last_marker: str | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._storage = storage
        self._last_marker = last_marker
        self.last_persistence_error: PersistenceError | None = None

    @property
    def clock(self) -> ResetClock:
        return self._clock

    @property
    def reset_time(self) -> ResetTime:
        return self._clock.reset_time

    @property
    def last_marker(self) -> str | None:
        return self._last_marker

    def settings(self) -> TrackerSettings:
        return TrackerSettings(reset_time=self.reset_time, last_reset_marker=self._last_marker)

    def state(self, now: datetime) -> ResetState:
        if self._last_marker != self._clock.current_boundary_key(now):
            return ResetState.RESET_DUE
        return ResetState.SETTLED

    def check(self, now: datetime) -> bool:
        """Apply the reset if one is due. Returns True if a reset ran."""
        key = self._clock.current_boundary_key(now)
        if self._last_marker == key:
            return False

        cleared = 0
        for category in RESET_ELIGIBLE:
            cleared += self._store.clear_completion(category)
        previous, self._last_marker = self._last_marker, key

        logger.info(
            "Daily reset applied for %s (previous marker %s): %d task(s) cleared",
            key, previous, cleared,
        )
        self._save_snapshot()
        return True

    def save_reset_time(self, hour: int, minute: int, now: datetime) -> ResetTime:
        """Change the daily boundary.

        A reset already due under the old schedule is applied first; the
        marker is then re-anchored to the current day under the new schedule,
        so moving the boundary never clears today's completions by itself.
        """
        if not 0 <= hour <= 23:
            raise ValidationError(f"Hour must be within 0-23, got {hour}")
        if not 0 <= minute <= 59:
            raise ValidationError(f"Minute must be within 0-59, got {minute}")

        self.check(now)
        self._clock = self._clock.with_reset_time(ResetTime(hour=hour, minute=minute))
        self._last_marker = self._clock.current_boundary_key(now)
        logger.info("Reset time set to %s (marker %s)", self.reset_time, self._last_marker)
        self._save_settings()
        return self.reset_time

    # -- persistence --

    def _report(self, exc: PersistenceError) -> None:
        self.last_persistence_error = exc
        self._store.last_persistence_error = exc
        if self._store.on_persistence_error is not None:
            self._store.on_persistence_error(exc)

    def _save_snapshot(self) -> None:
        if self._storage is None:
            return
        try:
            self._storage.save_snapshot(self._store.all(), self.settings())
        except PersistenceError as exc:
            logger.error("Failed to persist reset snapshot: %s", exc)
            self._report(exc)

    def _save_settings(self) -> None:
        if self._storage is None:
            return
        try:
            self._storage.save_settings(self.settings())
        except PersistenceError as exc:
            logger.error("Failed to persist settings: %s", exc)
            self._report(exc)
