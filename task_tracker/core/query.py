"""
Task Tracker — Query Engine.

Pure derivation over the task collection, no side effects:
partition → search → completion filter → ordering, plus per-category
statistics computed over the unfiltered partition.
"""

from __future__ import annotations

import locale
import math
import unicodedata
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from task_tracker.data.models import Task, TaskCategory


class SortOption(str, Enum):
    NONE = "none"
    TITLE_ASC = "title-asc"
    TITLE_DESC = "title-desc"
    COMPLETED = "completed"
    UNCOMPLETED = "uncompleted"

    @classmethod
    def _missing_(cls, value: object) -> SortOption | None:
        if isinstance(value, str):
            return _SORT_ALIASES.get(value.strip().lower())
        return None


_SORT_ALIASES = {
    **{option.value: option for option in SortOption},
    "": SortOption.NONE,
    "default": SortOption.NONE,
    "title-ascending": SortOption.TITLE_ASC,
    "title-descending": SortOption.TITLE_DESC,
    "completed-only": SortOption.COMPLETED,
    "incomplete-only": SortOption.UNCOMPLETED,
    "incomplete": SortOption.UNCOMPLETED,
}


@dataclass(frozen=True)
class CategoryStats:
    category: TaskCategory
    total: int
    completed: int
    completion_rate: int   # whole percent
    streak: int            # tasks completed right now, not consecutive days


def partition(tasks: Iterable[Task], category: TaskCategory) -> list[Task]:
    return [t for t in tasks if t.category is category]


def matches_query(task: Task, query: str) -> bool:
    """Case-insensitive substring match on text, link or description."""
    needle = query.casefold()
    for value in (task.text, task.link, task.description):
        if value and needle in value.casefold():
            return True
    return False


def title_sort_key(text: str) -> tuple[str, str]:
    """Locale-aware collation key; ties fall back to the raw title."""
    folded = unicodedata.normalize("NFKD", text).casefold()
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch))
    return locale.strxfrm(folded), text


def visible_tasks(
    tasks: Iterable[Task],
    category: TaskCategory,
    query: str = "",
    sort: SortOption = SortOption.NONE,
) -> list[Task]:
    """Run the full view pipeline for the active category."""
    result = partition(tasks, category)

    query = (query or "").strip()
    if query:
        result = [t for t in result if matches_query(t, query)]

    if sort is SortOption.COMPLETED:
        result = [t for t in result if t.completed]
    elif sort is SortOption.UNCOMPLETED:
        result = [t for t in result if not t.completed]
    elif sort is SortOption.TITLE_ASC:
        result.sort(key=lambda t: title_sort_key(t.text))
    elif sort is SortOption.TITLE_DESC:
        result.sort(key=lambda t: title_sort_key(t.text), reverse=True)

    return result


def completion_rate(completed: int, total: int) -> int:
    """Whole percent, rounded half up; 0 for an empty partition."""
    if total == 0:
        return 0
    return math.floor(100 * completed / total + 0.5)


def category_stats(tasks: Iterable[Task], category: TaskCategory) -> CategoryStats:
    members = partition(tasks, category)
    done = sum(1 for t in members if t.completed)
    return CategoryStats(
        category=category,
        total=len(members),
        completed=done,
        completion_rate=completion_rate(done, len(members)),
        streak=done,
    )


def per_category_stats(tasks: Iterable[Task]) -> dict[TaskCategory, CategoryStats]:
    snapshot = list(tasks)
    return {c: category_stats(snapshot, c) for c in TaskCategory}
