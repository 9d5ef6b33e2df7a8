"""
Taskbot — Recurring Task Dispatcher.

One tick of the polling loop: find every active task whose next_send_at has
passed, deliver its reminder, and move next_send_at to the following
occurrence. Delivery is at-least-once: a failed send leaves next_send_at
untouched and the next tick tries again.

Only one dispatcher may run against a store. Each task's update is a plain
read-then-write with no claim or compare-and-swap, so two loops could
double-dispatch.

This module is provider-agnostic: it depends on the RecurringTaskStore and
NotificationPort protocols, not on SQLite or Telegram.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from taskbot.core.formatter import build_reminder_text
from taskbot.core.occurrence import next_occurrence
from taskbot.data.models import ensure_utc
from taskbot.ports.notification_port import DeliveryFailed
from taskbot.ports.store_port import StoreUnavailable

if TYPE_CHECKING:
    from taskbot.data.models import RecurringTask
    from taskbot.ports.notification_port import NotificationPort
    from taskbot.ports.store_port import RecurringTaskStore

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    """Outcome of one dispatch tick."""

    due: int = 0
    dispatched: int = 0
    failed: int = 0
    aborted: bool = False


class RecurringTaskDispatcher:
    """Polls the store for due recurring tasks and sends their reminders."""

    def __init__(
        self,
        store: RecurringTaskStore,
        notifier: NotificationPort,
        operational_offset: timedelta | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        if operational_offset is None or max_concurrency is None:
            from taskbot.config import settings
            if operational_offset is None:
                operational_offset = settings.operational_offset
            if max_concurrency is None:
                max_concurrency = settings.DISPATCH_CONCURRENCY

        self._store = store
        self._notifier = notifier
        self._offset = operational_offset
        self._max_concurrency = max_concurrency

    async def run_tick(self, now: datetime | None = None) -> TickResult:
        """Dispatch every task due at `now` (defaults to the current time).

        A store failure while listing due tasks aborts the whole tick;
        nothing is written and the next tick starts over.
        """
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        result = TickResult()

        try:
            due_tasks = self._store.get_due_recurring_tasks(now)
        except StoreUnavailable as exc:
            logger.error("Dispatch tick aborted, store unavailable: %s", exc)
            result.aborted = True
            return result

        result.due = len(due_tasks)
        if not due_tasks:
            return result

        logger.info("Found %d due recurring task(s)", len(due_tasks))

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _bounded(task: RecurringTask) -> bool:
            async with semaphore:
                return await self._process_task(task, now)

        outcomes = await asyncio.gather(*(_bounded(t) for t in due_tasks))
        result.dispatched = sum(1 for ok in outcomes if ok)
        result.failed = len(outcomes) - result.dispatched
        return result

    async def _process_task(self, task: RecurringTask, now: datetime) -> bool:
        """Deliver one reminder and reschedule. Never raises.

        Returns True when the reminder was delivered and the new
        next_send_at was persisted.
        """
        try:
            await self._deliver(task)
        except Exception as exc:
            overdue = now - task.next_send_at
            logger.warning(
                "Reminder for task #%d not delivered (overdue %s), will retry: %s",
                task.id, overdue, exc,
            )
            return False

        next_send_at = self._following_occurrence(task, now)
        try:
            self._store.update_recurring_task(
                task.id, last_sent_at=now, next_send_at=next_send_at,
            )
        except Exception as exc:
            # Reminder went out but the schedule wasn't advanced: the next
            # tick will send it again.
            logger.error(
                "Reminder for task #%d sent but reschedule failed: %s", task.id, exc,
            )
            return False

        logger.info(
            "Sent reminder for task #%d, next: %s", task.id, next_send_at.isoformat(),
        )
        return True

    async def _deliver(self, task: RecurringTask) -> None:
        delivered = await self._notifier.send_reminder(
            task.chat_id,
            task.assignee_mention,
            task.task_title,
            text=build_reminder_text(task),
            task_id=task.id,
            scheduled_at=task.next_send_at,
        )
        if not delivered:
            raise DeliveryFailed(f"channel rejected reminder for chat {task.chat_id}")

    def _following_occurrence(self, task: RecurringTask, now: datetime) -> datetime:
        """Next occurrence after the one just sent.

        Anchored at the previous next_send_at. If that is still in the past
        (the loop was down for several cycles), the missed cycles are
        collapsed and the schedule resumes from `now`.
        """
        following = next_occurrence(task.rule, task.next_send_at, self._offset)
        if following <= now:
            logger.info(
                "Task #%d missed cycles since %s, resuming from now",
                task.id, task.next_send_at.isoformat(),
            )
            following = next_occurrence(task.rule, now, self._offset)
        return following
