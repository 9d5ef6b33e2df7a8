"""Telegram notification adapter — implements NotificationPort.

Wraps a telegram.Bot instance. Each reminder carries a "Mark done" button
whose callback data identifies the task and the occurrence it belongs to.
"""

from __future__ import annotations

import logging
from datetime import datetime

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.error import TelegramError

from taskbot.data.models import ensure_utc

logger = logging.getLogger(__name__)

COMPLETE_CALLBACK_PREFIX = "rt_complete"


def build_complete_callback(task_id: int, scheduled_at: datetime) -> str:
    """Callback data for the completion button: rt_complete:<id>:<epoch ms>."""
    epoch_ms = int(ensure_utc(scheduled_at).timestamp() * 1000)
    return f"{COMPLETE_CALLBACK_PREFIX}:{task_id}:{epoch_ms}"


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_reminder(
        self,
        chat_id: str,
        assignee_mention: str | None,
        task_title: str,
        *,
        text: str | None = None,
        task_id: int | None = None,
        scheduled_at: datetime | None = None,
    ) -> bool:
        if text is None:
            text = f"🔔 {task_title}"
            if assignee_mention:
                text += f"\n👤 {assignee_mention}"

        reply_markup = None
        if task_id is not None and scheduled_at is not None:
            reply_markup = InlineKeyboardMarkup([[
                InlineKeyboardButton(
                    "✅ Mark done",
                    callback_data=build_complete_callback(task_id, scheduled_at),
                )
            ]])

        try:
            await self._bot.send_message(
                chat_id=chat_id, text=text, reply_markup=reply_markup,
            )
        except TelegramError as exc:
            logger.warning("Telegram rejected reminder for chat %s: %s", chat_id, exc)
            return False
        return True
