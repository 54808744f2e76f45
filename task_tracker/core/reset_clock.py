"""Daily reset clock — pure schedule arithmetic.

A "reset day" runs from one hour:minute boundary to the next, so the key of
an instant before today's boundary is yesterday's date.

No I/O: this module only transforms data.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from task_tracker.data.models import ResetTime


class ResetClock:
    """Boundary arithmetic for one ResetTime in one time zone.

    Args:
        reset_time: The daily boundary.
        tz: Zone the boundary is expressed in. None means naive local
            wall-clock time (aware inputs are then converted to local time).
    """

    def __init__(self, reset_time: ResetTime, tz: tzinfo | None = None) -> None:
        self.reset_time = reset_time
        self.tz = tz

    @classmethod
    def from_zone_name(cls, reset_time: ResetTime, zone: str | None) -> ResetClock:
        return cls(reset_time, ZoneInfo(zone) if zone else None)

    def with_reset_time(self, reset_time: ResetTime) -> ResetClock:
        return ResetClock(reset_time, self.tz)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def _localize(self, now: datetime) -> datetime:
        if now.tzinfo is None:
            return now.replace(tzinfo=self.tz) if self.tz is not None else now
        if self.tz is None:
            return now.astimezone().replace(tzinfo=None)
        return now.astimezone(self.tz)

    def _boundary_on(self, day: date, like: datetime) -> datetime:
        return datetime.combine(
            day, time(self.reset_time.hour, self.reset_time.minute), tzinfo=like.tzinfo,
        )

    def next_boundary(self, now: datetime) -> datetime:
        """The first boundary strictly after now (at the boundary → next day's)."""
        local = self._localize(now)
        candidate = self._boundary_on(local.date(), local)
        if candidate <= local:
            candidate = self._boundary_on(local.date() + timedelta(days=1), local)
        return candidate

    def current_boundary_key(self, now: datetime) -> str:
        """ISO date of the reset day that now belongs to."""
        local = self._localize(now)
        day = local.date()
        if local < self._boundary_on(day, local):
            day -= timedelta(days=1)
        return day.isoformat()

    def remaining(self, now: datetime) -> timedelta:
        """Real elapsed time until the next boundary, never negative."""
        local = self._localize(now)
        boundary = self.next_boundary(local)
        if local.tzinfo is not None:
            # Compare in UTC so DST shifts count as real time
            delta = boundary.astimezone(timezone.utc) - local.astimezone(timezone.utc)
        else:
            delta = boundary - local
        return max(delta, timedelta(0))


def format_remaining(delta: timedelta) -> str:
    """Render a countdown as HH:MM:SS."""
    total = max(int(delta.total_seconds()), 0)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
