"""
Task Tracker — Task Store.

The authoritative in-memory task collection. Every successful mutation is
written through to the storage port; a failed write is reported but never
rolls back the in-memory change (local-first: memory is the source of truth
for the running session).

The store is permissive about completion: the category lock and the
confirmation flow live in the tracker service.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from pydantic import HttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from task_tracker.core.errors import NotFoundError, ValidationError
from task_tracker.data.models import Task, TaskCategory, TaskStatus, now_ms
from task_tracker.ports.storage_port import PersistenceError

if TYPE_CHECKING:
    from task_tracker.ports.storage_port import StoragePort

logger = logging.getLogger(__name__)

_HTTP_URL = TypeAdapter(HttpUrl)

# Fields a user may edit after creation. id and category are fixed.
EDITABLE_FIELDS = frozenset({"text", "status", "link", "description"})


def is_valid_url(url: str | None) -> bool:
    """Empty is valid; a bare host like "example.com" gets https:// prepended."""
    if url is None or not url.strip():
        return True
    candidate = url.strip()
    if not candidate.startswith("http"):
        candidate = f"https://{candidate}"
    try:
        _HTTP_URL.validate_python(candidate)
    except PydanticValidationError:
        return False
    return True


def normalize_link(url: str | None) -> str:
    """Return an absolute URL for display ("" for no link)."""
    if not url:
        return ""
    return url if url.startswith("http") else f"https://{url}"


def _parse_status(value: TaskStatus | str) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown status: {value!r}") from None


def _parse_category(value: TaskCategory | str) -> TaskCategory:
    try:
        return TaskCategory(value)
    except ValueError:
        raise ValidationError(f"Unknown category: {value!r}") from None


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


class TaskStore:
    """Ordered, id-unique task collection with write-through persistence."""

    def __init__(
        self,
        storage: StoragePort | None = None,
        tasks: Iterable[Task] = (),
        clock: Callable[[], int] = now_ms,
        on_persistence_error: Callable[[PersistenceError], None] | None = None,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._tasks: dict[str, Task] = {}
        for task in tasks:
            if task.id in self._tasks:
                logger.warning("Dropping duplicate task id %s on load", task.id)
                continue
            self._tasks[task.id] = task
        self.on_persistence_error = on_persistence_error
        self.last_persistence_error: PersistenceError | None = None

    # -- reads --

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def all(self) -> tuple[Task, ...]:
        """Snapshot of the collection in insertion order."""
        return tuple(self._tasks.values())

    def get(self, task_id: str) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise NotFoundError(task_id) from None

    # -- persistence --

    def persist(self) -> bool:
        """Write the whole collection. Returns False if the write failed."""
        if self._storage is None:
            return True
        try:
            self._storage.save_tasks(self.all())
        except PersistenceError as exc:
            logger.error("Failed to persist %d tasks: %s", len(self._tasks), exc)
            self.last_persistence_error = exc
            if self.on_persistence_error is not None:
                self.on_persistence_error(exc)
            return False
        return True

    # -- commands --

    def _new_id(self) -> str:
        task_id = uuid.uuid4().hex
        while task_id in self._tasks:
            task_id = uuid.uuid4().hex
        return task_id

    def create(
        self,
        text: str,
        category: TaskCategory | str,
        status: TaskStatus | str = TaskStatus.EARLY,
        link: str | None = None,
        description: str | None = None,
    ) -> Task:
        """Validate and append a new task."""
        text = _clean(text)
        description = _clean(description)
        link = _clean(link)
        if not text:
            raise ValidationError("Task title must not be empty")
        if not description:
            raise ValidationError("Task description must not be empty")
        if not is_valid_url(link):
            raise ValidationError(f"Invalid link: {link!r}")

        task = Task(
            id=self._new_id(),
            text=text,
            category=_parse_category(category),
            status=_parse_status(status),
            created_at=self._clock(),
            link=link,
            description=description,
        )
        self._tasks[task.id] = task
        logger.info("Task created: %s '%s' [%s]", task.id, task.text, task.category.value)
        self.persist()
        return task

    def update(self, task_id: str, **fields: Any) -> Task:
        """Edit text/status/link/description of an existing task."""
        task = self.get(task_id)

        rejected = set(fields) - EDITABLE_FIELDS
        if rejected:
            raise ValidationError(f"Cannot change field(s): {', '.join(sorted(rejected))}")

        changes: dict[str, Any] = {}
        if "text" in fields:
            text = _clean(fields["text"])
            if not text:
                raise ValidationError("Task title must not be empty")
            changes["text"] = text
        if "status" in fields:
            changes["status"] = _parse_status(fields["status"])
        if "link" in fields:
            link = _clean(fields["link"])
            if not is_valid_url(link):
                raise ValidationError(f"Invalid link: {link!r}")
            changes["link"] = link
        if "description" in fields:
            description = _clean(fields["description"])
            if not description:
                raise ValidationError("Task description must not be empty")
            changes["description"] = description

        for name, value in changes.items():
            setattr(task, name, value)
        logger.info("Task updated: %s (%s)", task_id, ", ".join(changes) or "no changes")
        self.persist()
        return task

    def delete(self, task_id: str) -> Task:
        """Remove a task immediately."""
        task = self.get(task_id)
        del self._tasks[task_id]
        logger.info("Task deleted: %s '%s'", task_id, task.text)
        self.persist()
        return task

    def toggle_completion(self, task_id: str) -> Task:
        """Flip completed and keep completed_at in step with it."""
        task = self.get(task_id)
        task.completed = not task.completed
        task.completed_at = self._clock() if task.completed else None
        logger.info("Task %s marked %s", task_id, "complete" if task.completed else "incomplete")
        self.persist()
        return task

    def clear_completion(self, category: TaskCategory) -> int:
        """Clear completion of every task in a category without persisting.

        Returns the number of tasks that changed. The caller owns the write
        (the reset engine persists tasks and settings together).
        """
        changed = 0
        for task in self._tasks.values():
            if task.category is category and (task.completed or task.completed_at is not None):
                task.completed = False
                task.completed_at = None
                changed += 1
        return changed

    def replace_all(self, tasks: Iterable[Task]) -> None:
        """Swap in a whole new collection with a single write."""
        replacement: dict[str, Task] = {}
        for task in tasks:
            if task.id in replacement:
                raise ValidationError(f"Duplicate task id: {task.id}")
            replacement[task.id] = task
        self._tasks = replacement
        logger.info("Task collection replaced (%d tasks)", len(replacement))
        self.persist()
