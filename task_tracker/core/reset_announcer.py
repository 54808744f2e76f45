"""
Task Tracker — Reset Announcer.

Pushes a short "new day" message to every operator when the daily reset
clears the daily tasks. Subscribed to the reset ticker; only reacts to ticks
that actually applied a reset.

This module is provider-agnostic: it depends on the NotificationPort
protocol, not on a specific messenger.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from task_tracker.core.reset_clock import format_remaining
from task_tracker.data.models import TaskCategory

if TYPE_CHECKING:
    from task_tracker.core.ticker import TickEvent
    from task_tracker.core.tracker_service import TrackerService
    from task_tracker.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


def build_reset_message(service: TrackerService, event: TickEvent) -> str:
    daily = service.per_category_stats()[TaskCategory.DAILY]
    if daily.total == 0:
        body = "No daily tasks yet. Use /add daily to create one."
    else:
        body = f"{daily.total} daily task(s) are open again."
    return (
        "🌅 *Daily tasks reset*\n\n"
        f"{body}\n"
        f"Next reset in {format_remaining(event.remaining)} "
        f"(at {service.reset_time})."
    )


class ResetAnnouncer:
    """Tick listener that notifies operators after each reset."""

    def __init__(
        self,
        service: TrackerService,
        notifier: NotificationPort,
        user_ids: Iterable[int],
    ) -> None:
        self._service = service
        self._notifier = notifier
        self._user_ids = list(user_ids)

    async def __call__(self, event: TickEvent) -> None:
        if not event.reset_applied:
            return
        message = build_reset_message(self._service, event)
        for user_id in self._user_ids:
            try:
                await self._notifier.send_message(user_id, message)
                logger.info("Reset notice sent to user %d", user_id)
            except Exception as exc:
                logger.error("Failed to send reset notice to %d: %s", user_id, exc)
