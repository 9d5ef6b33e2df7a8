"""Notification port — abstract interface for delivering task reminders.

Core modules depend on this protocol, never on a specific messaging provider.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol


class DeliveryFailed(Exception):
    """Raised when a reminder could not be delivered; the next tick retries."""


class NotificationPort(Protocol):
    """Abstract reminder delivery interface used by core modules.

    Returns True when the reminder was handed to the channel, False otherwise.
    Delivery may be repeated for the same occurrence, so receivers must
    tolerate the occasional duplicate.
    """

    async def send_reminder(
        self,
        chat_id: str,
        assignee_mention: str | None,
        task_title: str,
        *,
        text: str | None = None,
        task_id: int | None = None,
        scheduled_at: datetime | None = None,
    ) -> bool: ...
