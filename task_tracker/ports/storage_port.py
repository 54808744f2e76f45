"""Storage port — abstract interface for durable task/settings records.

Core modules depend on this protocol, never on a specific backend.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from task_tracker.data.models import Task, TrackerSettings


class PersistenceError(Exception):
    """Raised when the durable store cannot be read or written."""


class StoragePort(Protocol):
    """Two logical records, each read and written as a whole document."""

    def load_tasks(self) -> list[Task]: ...

    def save_tasks(self, tasks: Sequence[Task]) -> None: ...

    def load_settings(self) -> TrackerSettings | None: ...

    def save_settings(self, settings: TrackerSettings) -> None: ...

    def save_snapshot(
        self, tasks: Sequence[Task], settings: TrackerSettings
    ) -> None: ...
