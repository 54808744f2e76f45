"""Notification port — outbound messages to the tracker's operators.

The reset announcer pushes "daily tasks reset" notices through this
protocol; the Telegram adapter is the only implementation today.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Delivers a text message to one operator, addressed by user id."""

    async def send_message(self, user_id: int, text: str) -> None: ...
