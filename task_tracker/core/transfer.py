"""
Task Tracker — Import/Export Gateway.

Export writes the full collection plus the reset time into a versioned
interchange document. Import accepts that document or a bare task array
(the legacy backup layout), validates every element, and only then hands the
whole set back. Nothing here touches the store: the tracker service applies
an ImportBundle in one step, so an import either lands completely or not at
all.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    field_validator,
)
from pydantic import ValidationError as PydanticValidationError

from task_tracker.core.errors import SchemaError
from task_tracker.data.db import task_to_record
from task_tracker.data.models import ResetTime, Task, TaskCategory, TaskStatus

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"

# Epoch milliseconds; NaN/Infinity parse as JSON floats but are not instants
Millis = StrictInt | Annotated[StrictFloat, Field(allow_inf_nan=False)]


# ---------------------------------------------------------------------------
# Import schema
# ---------------------------------------------------------------------------


class TaskRecord(BaseModel):
    """One task as it appears in an interchange document."""

    model_config = ConfigDict(extra="ignore")

    id: StrictStr
    text: StrictStr
    completed: StrictBool
    category: TaskCategory = Field(validation_alias=AliasChoices("type", "category"))
    status: TaskStatus = TaskStatus.EARLY   # older backups have no status
    created_at: Millis = Field(validation_alias="createdAt")
    completed_at: Millis | None = Field(
        default=None, validation_alias="completedAt",
    )
    link: StrictStr | None = None
    description: StrictStr | None = None

    @field_validator("category", mode="before")
    @classmethod
    def parse_category(cls, v: Any) -> TaskCategory:
        if not isinstance(v, str):
            raise ValueError("category must be a string")
        return TaskCategory(v)

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v: Any) -> TaskStatus:
        if v is None:
            return TaskStatus.EARLY
        if not isinstance(v, str):
            raise ValueError("status must be a string")
        return TaskStatus(v)

    def to_task(self, imported_at: int) -> Task:
        completed_at: int | None = None
        if self.completed:
            completed_at = int(self.completed_at) if self.completed_at is not None else imported_at
        return Task(
            id=self.id,
            text=self.text,
            category=self.category,
            status=self.status,
            completed=self.completed,
            created_at=int(self.created_at),
            completed_at=completed_at,
            link=self.link or None,
            description=self.description or None,
        )


class ResetTimeRecord(BaseModel):
    hour: Annotated[StrictInt, Field(ge=0, le=23)]
    minute: Annotated[StrictInt, Field(ge=0, le=59)]


@dataclass
class ImportBundle:
    """A fully validated import, ready to replace the store."""

    tasks: list[Task]
    reset_time: ResetTime | None = None


def _describe(exc: PydanticValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(part) for part in err.get("loc", ())) or "value"
    return f"{loc}: {err.get('msg', 'invalid')}"


def _to_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def parse_import(payload: Any, now: datetime) -> ImportBundle:
    """Validate a decoded import payload.

    Raises:
        SchemaError: No task array found, any element invalid, duplicate ids,
            or a malformed customResetTime.
    """
    reset_raw: Any = None
    if isinstance(payload, list):
        records = payload
    elif isinstance(payload, dict) and isinstance(payload.get("tasks"), list):
        records = payload["tasks"]
        reset_raw = payload.get("customResetTime")
    else:
        raise SchemaError("Invalid file format: no task list found")

    imported_at = _to_ms(now)
    tasks: list[Task] = []
    seen: set[str] = set()
    for index, raw in enumerate(records, start=1):
        try:
            record = TaskRecord.model_validate(raw)
        except PydanticValidationError as exc:
            raise SchemaError(f"Invalid task #{index}: {_describe(exc)}") from exc
        if record.id in seen:
            raise SchemaError(f"Invalid task #{index}: duplicate id {record.id}")
        seen.add(record.id)
        tasks.append(record.to_task(imported_at))

    reset_time: ResetTime | None = None
    if reset_raw is not None:
        try:
            rt = ResetTimeRecord.model_validate(reset_raw)
        except PydanticValidationError as exc:
            raise SchemaError(f"Invalid customResetTime: {_describe(exc)}") from exc
        reset_time = ResetTime(hour=rt.hour, minute=rt.minute)

    logger.info(
        "Import validated: %d tasks%s",
        len(tasks), f", reset time {reset_time}" if reset_time else "",
    )
    return ImportBundle(tasks=tasks, reset_time=reset_time)


def loads_import(text: str, now: datetime) -> ImportBundle:
    """Parse JSON text and validate it."""
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SchemaError(f"Invalid file format: not valid JSON ({exc.msg})") from exc
    return parse_import(payload, now)


async def read_import_file(path: str | Path) -> str:
    """Read an import file off the event loop.

    No timeout: a read that never completes simply never resolves.
    """
    try:
        return await asyncio.to_thread(Path(path).read_text, encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise SchemaError(f"Could not read import file: {exc}") from exc


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def build_export(
    tasks: Sequence[Task], reset_time: ResetTime, now: datetime,
) -> dict[str, Any]:
    """Build the interchange document for the full collection."""
    return {
        "tasks": [task_to_record(t) for t in tasks],
        "customResetTime": {"hour": reset_time.hour, "minute": reset_time.minute},
        "exportDate": now.astimezone(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z"),
        "version": EXPORT_VERSION,
    }


def dumps_export(
    tasks: Sequence[Task], reset_time: ResetTime, now: datetime,
) -> str:
    return json.dumps(build_export(tasks, reset_time, now), indent=2, ensure_ascii=False)


def export_filename(now: datetime) -> str:
    return f"task-tracker-backup-{now.date().isoformat()}.json"
