"""
Task Tracker — Data Models.

Tasks persist locally across sessions. Each task belongs to exactly one
category, and the category decides how completion behaves: daily tasks are
cleared at the reset boundary and locked once done, everything else is
freely reversible.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


class TaskCategory(str, Enum):
    """The closed set of task partitions.

    Values are the interchange spellings stored on disk and in export files.
    """

    DAILY = "daily"
    NOTE = "note"
    WAITLIST = "waitlist"
    TESTNET = "testnet"
    SOCIAL_LINKS = "social_links"

    @classmethod
    def _missing_(cls, value: object) -> TaskCategory | None:
        if isinstance(value, str):
            return _CATEGORY_ALIASES.get(value.strip().lower())
        return None

    @property
    def label(self) -> str:
        return _CATEGORY_LABELS[self]


_CATEGORY_ALIASES = {
    "daily": TaskCategory.DAILY,
    "note": TaskCategory.NOTE,
    "note-only": TaskCategory.NOTE,
    "note_only": TaskCategory.NOTE,
    "waitlist": TaskCategory.WAITLIST,
    "testnet": TaskCategory.TESTNET,
    "social_links": TaskCategory.SOCIAL_LINKS,
    "social-links": TaskCategory.SOCIAL_LINKS,
}

_CATEGORY_LABELS = {
    TaskCategory.DAILY: "Daily",
    TaskCategory.NOTE: "Task Only",
    TaskCategory.WAITLIST: "Waitlist",
    TaskCategory.TESTNET: "Testnet",
    TaskCategory.SOCIAL_LINKS: "Social Links",
}


class TaskStatus(str, Enum):
    """Free-form lifecycle tag shown next to a task."""

    EARLY = "early"
    ONGOING = "ongoing"
    ENDED = "ended"


@dataclass
class Task:
    """A tracked task.

    Timestamps are epoch milliseconds, matching the createdAt/completedAt
    fields of backup files.
    """

    id: str
    text: str
    category: TaskCategory
    status: TaskStatus = TaskStatus.EARLY
    completed: bool = False
    created_at: int = field(default_factory=lambda: now_ms())
    completed_at: int | None = None   # set iff completed
    link: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class ResetTime:
    """Daily reset boundary as wall-clock hour:minute."""

    hour: int = 0
    minute: int = 0

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


@dataclass
class TrackerSettings:
    """The persisted settings record: reset time plus last-reset marker."""

    reset_time: ResetTime = field(default_factory=ResetTime)
    last_reset_marker: str | None = None   # ISO date of the last reset day


def now_ms() -> int:
    return int(time.time() * 1000)
