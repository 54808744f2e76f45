"""Shared test fixtures and configuration.

Sets up fake environment variables before any task_tracker imports, and
provides common fixtures like a temp DB and a tracker pinned to a fixed
clock.
"""

import os

# Patch env vars BEFORE any task_tracker imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "UTC")

from datetime import datetime, timezone

import pytest


class FrozenClock:
    """Mutable 'now' for tests; call it to read, assign .now to move time."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    """A clock fixed at 2026-03-10 12:00 UTC."""
    return FrozenClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_tracker.db")


@pytest.fixture
def tracker_db(tmp_db_path):
    """Return a TrackerDB instance backed by a temp file."""
    from task_tracker.data.db import TrackerDB
    return TrackerDB(db_path=tmp_db_path)


@pytest.fixture
def service(tracker_db, clock):
    """A TrackerService on a temp DB, reset at 08:00 UTC, clock at noon."""
    from task_tracker.core.tracker_service import TrackerService
    from task_tracker.data.models import ResetTime

    return TrackerService.open(
        tracker_db,
        default_reset_time=ResetTime(8, 0),
        timezone="UTC",
        clock=clock,
    )
