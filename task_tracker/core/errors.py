"""Error taxonomy for the task state engine.

Every command either succeeds or raises one of these before touching state.
PersistenceError lives with the storage port (see ports/storage_port.py) and
never aborts a command.
"""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for errors reported back to the presentation layer."""


class ValidationError(TrackerError):
    """Bad task fields or a command that is not allowed in the current state."""


class CompletionLockedError(ValidationError):
    """A locked task was toggled again before the next reset."""


class NotFoundError(TrackerError):
    """The command referenced an unknown task id."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class SchemaError(TrackerError):
    """An import document is malformed or unrecognized."""
