"""
Task Tracker — Record Store.

Tasks and settings persist in SQLite as two whole-document JSON records,
`tasks` and `settings`, surviving restarts. Every write replaces the full
record; there are no field-level updates.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from task_tracker.data.models import (
    ResetTime,
    Task,
    TaskCategory,
    TaskStatus,
    TrackerSettings,
)
from task_tracker.ports.storage_port import PersistenceError

logger = logging.getLogger(__name__)

STORAGE_VERSION = 1

TASKS_KEY = "tasks"
SETTINGS_KEY = "settings"


# ---------------------------------------------------------------------------
# Record codec
# ---------------------------------------------------------------------------


def task_to_record(task: Task) -> dict[str, Any]:
    """Serialize a task using the interchange key names."""
    record: dict[str, Any] = {
        "id": task.id,
        "text": task.text,
        "completed": task.completed,
        "type": task.category.value,
        "status": task.status.value,
        "createdAt": task.created_at,
    }
    if task.completed_at is not None:
        record["completedAt"] = task.completed_at
    if task.link:
        record["link"] = task.link
    if task.description:
        record["description"] = task.description
    return record


def task_from_record(record: dict[str, Any]) -> Task:
    """Rebuild a task from a stored record.

    Raises KeyError/ValueError on records that are missing required keys.
    """
    if not isinstance(record, dict):
        raise TypeError(f"task record must be an object, got {type(record).__name__}")
    category = record.get("type", record.get("category"))
    completed = bool(record["completed"])
    return Task(
        id=str(record["id"]),
        text=str(record["text"]),
        category=TaskCategory(category),
        status=TaskStatus(record.get("status") or TaskStatus.EARLY.value),
        completed=completed,
        created_at=int(record["createdAt"]),
        completed_at=int(record["completedAt"]) if completed and record.get("completedAt") is not None else None,
        link=record.get("link") or None,
        description=record.get("description") or None,
    )


def settings_to_record(settings: TrackerSettings) -> dict[str, Any]:
    return {
        "version": STORAGE_VERSION,
        "resetTime": {
            "hour": settings.reset_time.hour,
            "minute": settings.reset_time.minute,
        },
        "lastResetMarker": settings.last_reset_marker,
    }


def _bounded_int(value: Any, name: str, upper: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer, got {value!r}")
    if not 0 <= value <= upper:
        raise ValueError(f"{name} must be between 0 and {upper}, got {value}")
    return value


def settings_from_record(record: dict[str, Any]) -> TrackerSettings:
    """Rebuild settings from a stored record.

    Raises TypeError/ValueError when the reset time is malformed or out of range.
    """
    reset = record.get("resetTime") or {}
    if not isinstance(reset, dict):
        raise TypeError(f"resetTime must be an object, got {type(reset).__name__}")
    marker = record.get("lastResetMarker")
    if marker is not None and not isinstance(marker, str):
        raise TypeError(f"lastResetMarker must be a string, got {marker!r}")
    return TrackerSettings(
        reset_time=ResetTime(
            hour=_bounded_int(reset.get("hour", 0), "hour", 23),
            minute=_bounded_int(reset.get("minute", 0), "minute", 59),
        ),
        last_reset_marker=marker,
    )


# ---------------------------------------------------------------------------
# SQLite store
# ---------------------------------------------------------------------------


class TrackerDB:
    """SQLite-backed key/value storage for the task collection and settings."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from task_tracker.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create the records table if it doesn't exist."""
        try:
            with self._connect() as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS records (
                        key         TEXT PRIMARY KEY,
                        value       TEXT NOT NULL,
                        updated_at  TEXT NOT NULL
                    )
                """)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open store at {self._db_path}: {exc}") from exc
        logger.debug("Records table initialized at %s", self._db_path)

    # -- low-level record access --

    def _read(self, key: str) -> Any | None:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT value FROM records WHERE key = ?", (key,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to read '{key}': {exc}") from exc
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Record '{key}' is corrupt: {exc}") from exc

    @staticmethod
    def _upsert(conn: sqlite3.Connection, key: str, document: Any) -> None:
        conn.execute(
            """
            INSERT INTO records (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (
                key,
                json.dumps(document, ensure_ascii=False),
                datetime.now(timezone.utc).isoformat(),
            ),
        )

    def _write(self, documents: dict[str, Any]) -> None:
        """Write one or more records in a single transaction."""
        try:
            with self._connect() as conn:
                for key, document in documents.items():
                    self._upsert(conn, key, document)
        except sqlite3.Error as exc:
            raise PersistenceError(
                f"Failed to write {', '.join(documents)}: {exc}"
            ) from exc

    # -- tasks --

    @staticmethod
    def _tasks_document(tasks: Sequence[Task]) -> dict[str, Any]:
        return {
            "version": STORAGE_VERSION,
            "tasks": [task_to_record(t) for t in tasks],
        }

    def load_tasks(self) -> list[Task]:
        """Return the stored collection (empty when nothing was saved yet)."""
        document = self._read(TASKS_KEY)
        if document is None:
            return []

        # Legacy layout: a bare array of tasks with no version envelope
        if isinstance(document, list):
            logger.info("Migrating legacy tasks record (%d tasks)", len(document))
            records = document
        elif isinstance(document, dict) and isinstance(document.get("tasks"), list):
            version = document.get("version", STORAGE_VERSION)
            if not isinstance(version, int) or version > STORAGE_VERSION:
                raise PersistenceError(
                    f"Tasks record version {version!r} is not supported (max {STORAGE_VERSION})"
                )
            records = document["tasks"]
        else:
            raise PersistenceError("Tasks record has an unrecognized layout")

        try:
            tasks = [task_from_record(r) for r in records]
        except (KeyError, TypeError, ValueError, OverflowError) as exc:
            raise PersistenceError(f"Tasks record is corrupt: {exc}") from exc
        logger.debug("Loaded %d tasks from %s", len(tasks), self._db_path)
        return tasks

    def save_tasks(self, tasks: Sequence[Task]) -> None:
        self._write({TASKS_KEY: self._tasks_document(tasks)})

    # -- settings --

    def load_settings(self) -> TrackerSettings | None:
        """Return stored settings, or None when nothing was saved yet."""
        document = self._read(SETTINGS_KEY)
        if document is None:
            return None
        if not isinstance(document, dict):
            raise PersistenceError("Settings record has an unrecognized layout")
        try:
            return settings_from_record(document)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"Settings record is corrupt: {exc}") from exc

    def save_settings(self, settings: TrackerSettings) -> None:
        self._write({SETTINGS_KEY: settings_to_record(settings)})

    def save_snapshot(
        self, tasks: Sequence[Task], settings: TrackerSettings
    ) -> None:
        """Persist tasks and settings together (used by the reset engine)."""
        self._write({
            TASKS_KEY: self._tasks_document(tasks),
            SETTINGS_KEY: settings_to_record(settings),
        })
        logger.debug("Snapshot saved: %d tasks, marker=%s", len(tasks), settings.last_reset_marker)
