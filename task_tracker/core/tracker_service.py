"""
Task Tracker — UI-Agnostic Tracker Service.

The command boundary every presentation adapter talks to. It owns the task
store, the reset engine and the view state (active category, search query,
sort option), and enforces the rules the store itself does not:

- Completion lock: a completed task in a locked category (daily by default)
  cannot be toggled back by the user; only the daily reset clears it.
- Confirmation: completing a daily task, and deleting any task, go through a
  single pending slot (stage → confirm | cancel).

Each UI adapter (Telegram today) calls this service and renders the
returned objects in its own way.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from task_tracker.core import query
from task_tracker.core.errors import CompletionLockedError, ValidationError
from task_tracker.core.reset_clock import ResetClock
from task_tracker.core.reset_engine import ResetEngine, ResetState
from task_tracker.core.task_store import TaskStore
from task_tracker.core.transfer import (
    ImportBundle,
    dumps_export,
    export_filename,
    loads_import,
    parse_import,
    read_import_file,
)
from task_tracker.data.models import ResetTime, Task, TaskCategory, TaskStatus
from task_tracker.ports.storage_port import PersistenceError

if TYPE_CHECKING:
    from task_tracker.core.query import CategoryStats, SortOption
    from task_tracker.ports.storage_port import StoragePort

logger = logging.getLogger(__name__)

DEFAULT_LOCKED_CATEGORIES = frozenset({TaskCategory.DAILY})
DEFAULT_CONFIRM_CATEGORIES = frozenset({TaskCategory.DAILY})


# ---------------------------------------------------------------------------
# Confirmation state
# ---------------------------------------------------------------------------


class PendingAction(Enum):
    COMPLETE = "complete"
    DELETE = "delete"


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class PendingConfirmation:
    task_id: str
    action: PendingAction


@dataclass(frozen=True)
class Confirmed:
    task_id: str
    action: PendingAction


ConfirmationState = Idle | PendingConfirmation | Confirmed


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class ToggleResult:
    task: Task
    pending: bool = False   # True: nothing changed yet, confirmation required


@dataclass
class ImportResult:
    count: int
    reset_time: ResetTime | None = None

    @property
    def message(self) -> str:
        return f"Successfully imported {self.count} tasks"


@dataclass
class ExportFile:
    filename: str
    content: str


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TrackerService:
    """Owned state container with an explicit command/query interface."""

    def __init__(
        self,
        store: TaskStore,
        reset_engine: ResetEngine,
        clock: Callable[[], datetime] | None = None,
        locked_categories: Iterable[TaskCategory] = DEFAULT_LOCKED_CATEGORIES,
        confirm_categories: Iterable[TaskCategory] = DEFAULT_CONFIRM_CATEGORIES,
    ) -> None:
        self._store = store
        self._engine = reset_engine
        self._clock = clock or reset_engine.clock.now
        self.locked_categories = frozenset(locked_categories)
        self.confirm_categories = frozenset(confirm_categories)

        self._confirmation: ConfirmationState = Idle()
        self._category = TaskCategory.DAILY
        self._search_query = ""
        self._sort_option = query.SortOption.NONE

        self._persistence_error: PersistenceError | None = store.last_persistence_error
        store.on_persistence_error = self._record_persistence_error

    @classmethod
    def open(
        cls,
        storage: StoragePort | None,
        default_reset_time: ResetTime = ResetTime(),
        timezone: str | None = None,
        clock: Callable[[], datetime] | None = None,
        **kwargs: Any,
    ) -> TrackerService:
        """Load the persisted state, run the on-load reset check, and return
        a ready service. Read failures are reported, never fatal: the session
        starts from whatever could be loaded.
        """
        load_error: PersistenceError | None = None
        tasks: list[Task] = []
        stored_settings = None
        if storage is not None:
            try:
                tasks = storage.load_tasks()
            except PersistenceError as exc:
                logger.error("Could not load tasks, starting empty: %s", exc)
                load_error = exc
            try:
                stored_settings = storage.load_settings()
            except PersistenceError as exc:
                logger.error("Could not load settings, using defaults: %s", exc)
                load_error = exc

        reset_time = stored_settings.reset_time if stored_settings else default_reset_time
        marker = stored_settings.last_reset_marker if stored_settings else None
        reset_clock = ResetClock(reset_time, ZoneInfo(timezone) if timezone else None)
        now = clock or reset_clock.now

        store = TaskStore(storage, tasks, clock=lambda: int(now().timestamp() * 1000))
        store.last_persistence_error = load_error
        engine = ResetEngine(store, reset_clock, storage, last_marker=marker)
        service = cls(store, engine, clock=now, **kwargs)
        engine.check(now())
        logger.info(
            "Tracker ready: %d tasks, reset at %s, marker %s",
            len(store), engine.reset_time, engine.last_marker,
        )
        return service

    # -- internals --

    def now(self) -> datetime:
        return self._clock()

    def _now(self, now: datetime | None = None) -> datetime:
        return now if now is not None else self._clock()

    def _record_persistence_error(self, exc: PersistenceError) -> None:
        self._persistence_error = exc

    def take_persistence_error(self) -> PersistenceError | None:
        """Return (and clear) the most recent unreported storage failure."""
        exc, self._persistence_error = self._persistence_error, None
        return exc

    def _forget_pending(self, task_id: str) -> None:
        state = self._confirmation
        if isinstance(state, PendingConfirmation) and state.task_id == task_id:
            self._confirmation = Idle()

    # -- reads --

    @property
    def store(self) -> TaskStore:
        return self._store

    @property
    def reset_engine(self) -> ResetEngine:
        return self._engine

    @property
    def confirmation(self) -> ConfirmationState:
        return self._confirmation

    @property
    def active_category(self) -> TaskCategory:
        return self._category

    @property
    def search_query(self) -> str:
        return self._search_query

    @property
    def sort_option(self) -> SortOption:
        return self._sort_option

    @property
    def reset_time(self) -> ResetTime:
        return self._engine.reset_time

    def get(self, task_id: str) -> Task:
        return self._store.get(task_id)

    def visible_tasks(self) -> list[Task]:
        return query.visible_tasks(
            self._store.all(), self._category, self._search_query, self._sort_option,
        )

    def per_category_stats(self) -> dict[TaskCategory, CategoryStats]:
        return query.per_category_stats(self._store.all())

    def time_remaining_to_reset(self, now: datetime | None = None) -> timedelta:
        return self._engine.clock.remaining(self._now(now))

    def reset_state(self, now: datetime | None = None) -> ResetState:
        return self._engine.state(self._now(now))

    def is_locked(self, task: Task) -> bool:
        return task.completed and task.category in self.locked_categories

    # -- task commands --

    def create(
        self,
        text: str,
        category: TaskCategory | str,
        status: TaskStatus | str = TaskStatus.EARLY,
        link: str | None = None,
        description: str | None = None,
    ) -> Task:
        return self._store.create(text, category, status, link=link, description=description)

    def update(self, task_id: str, **fields: Any) -> Task:
        return self._store.update(task_id, **fields)

    def delete(self, task_id: str) -> Task:
        task = self._store.delete(task_id)
        self._forget_pending(task_id)
        return task

    def toggle(self, task_id: str) -> ToggleResult:
        """Direct toggle from the UI, subject to lock and confirmation rules."""
        task = self._store.get(task_id)
        if self.is_locked(task):
            logger.warning("Rejected toggle of locked task %s", task_id)
            raise CompletionLockedError(
                f"'{task.text}' is already completed and stays locked until the next reset"
            )
        if not task.completed and task.category in self.confirm_categories:
            self.stage_completion(task_id)
            return ToggleResult(task=task, pending=True)
        return ToggleResult(task=self._store.toggle_completion(task_id))

    # -- completion confirmation --

    def stage_completion(self, task_id: str) -> PendingConfirmation:
        task = self._store.get(task_id)
        if self.is_locked(task):
            raise CompletionLockedError(f"'{task.text}' is already completed")
        if task.completed:
            raise ValidationError(f"'{task.text}' is already completed")
        self._confirmation = PendingConfirmation(task_id, PendingAction.COMPLETE)
        logger.debug("Completion staged for %s", task_id)
        return self._confirmation

    def _take_pending(self, action: PendingAction, expected: str | None) -> str:
        state = self._confirmation
        if not isinstance(state, PendingConfirmation) or state.action is not action:
            raise ValidationError(f"No {action.value} is awaiting confirmation")
        if expected is not None and state.task_id != expected:
            # An older prompt; the newer one stays pending
            raise ValidationError(
                f"This {action.value} request has expired, use the latest prompt"
            )
        return state.task_id

    def _is_pending(self, action: PendingAction, expected: str | None) -> bool:
        state = self._confirmation
        return (
            isinstance(state, PendingConfirmation)
            and state.action is action
            and (expected is None or state.task_id == expected)
        )

    def confirm_completion(self, task_id: str | None = None) -> Task:
        """Complete the staged task.

        Passing task_id confirms only if that task is the one staged; a stale
        confirmation raises ValidationError and leaves the pending slot as is.
        """
        task_id = self._take_pending(PendingAction.COMPLETE, task_id)
        self._confirmation = Idle()
        task = self._store.get(task_id)
        if task.completed:
            raise ValidationError(f"'{task.text}' is already completed")
        task = self._store.toggle_completion(task_id)
        self._confirmation = Confirmed(task_id, PendingAction.COMPLETE)
        return task

    def cancel_completion(self, task_id: str | None = None) -> bool:
        """Discard a staged completion. Returns False if none (or another) was staged."""
        if not self._is_pending(PendingAction.COMPLETE, task_id):
            return False
        self._confirmation = Idle()
        return True

    # -- delete confirmation --

    def stage_delete(self, task_id: str) -> PendingConfirmation:
        self._store.get(task_id)
        self._confirmation = PendingConfirmation(task_id, PendingAction.DELETE)
        return self._confirmation

    def confirm_delete(self, task_id: str | None = None) -> Task:
        task_id = self._take_pending(PendingAction.DELETE, task_id)
        self._confirmation = Idle()
        task = self._store.delete(task_id)
        self._confirmation = Confirmed(task_id, PendingAction.DELETE)
        return task

    def cancel_delete(self, task_id: str | None = None) -> bool:
        if not self._is_pending(PendingAction.DELETE, task_id):
            return False
        self._confirmation = Idle()
        return True

    # -- view state --

    def set_category(self, category: TaskCategory | str) -> TaskCategory:
        try:
            self._category = TaskCategory(category)
        except ValueError:
            raise ValidationError(f"Unknown category: {category!r}") from None
        return self._category

    def set_search_query(self, text: str | None) -> str:
        self._search_query = (text or "").strip()
        return self._search_query

    def set_sort_option(self, option: SortOption | str) -> SortOption:
        try:
            self._sort_option = query.SortOption(option)
        except ValueError:
            raise ValidationError(f"Unknown sort option: {option!r}") from None
        return self._sort_option

    # -- reset --

    def save_reset_time(self, hour: int, minute: int, now: datetime | None = None) -> ResetTime:
        return self._engine.save_reset_time(hour, minute, self._now(now))

    def tick(self, now: datetime | None = None) -> bool:
        """Re-evaluate the boundary. Returns True if a reset was applied."""
        return self._engine.check(self._now(now))

    # -- import / export --

    def export_now(self, now: datetime | None = None) -> ExportFile:
        now = self._now(now)
        content = dumps_export(self._store.all(), self.reset_time, now)
        logger.info("Exported %d tasks", len(self._store))
        return ExportFile(filename=export_filename(now), content=content)

    def _apply_import(self, bundle: ImportBundle, now: datetime) -> ImportResult:
        self._store.replace_all(bundle.tasks)
        self._confirmation = Idle()
        if bundle.reset_time is not None:
            self._engine.save_reset_time(bundle.reset_time.hour, bundle.reset_time.minute, now)
        logger.info("Imported %d tasks", len(bundle.tasks))
        return ImportResult(count=len(bundle.tasks), reset_time=bundle.reset_time)

    def import_payload(self, payload: Any, now: datetime | None = None) -> ImportResult:
        """Validate an already-decoded document and replace the collection."""
        now = self._now(now)
        return self._apply_import(parse_import(payload, now), now)

    def import_text(self, text: str, now: datetime | None = None) -> ImportResult:
        now = self._now(now)
        return self._apply_import(loads_import(text, now), now)

    async def import_from(self, path: str | Path) -> ImportResult:
        """Read a backup file, then validate and replace in one step."""
        text = await read_import_file(path)
        return self.import_text(text)
