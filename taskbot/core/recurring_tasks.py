"""Recurring task management — create, edit, pause, resume, delete.

The only place besides the dispatcher that writes next_send_at. Every value
it writes comes from the occurrence calculator, anchored at "now".
Rules are validated when they are constructed, so InvalidRecurrenceRule
surfaces here, at creation/update time, never during dispatch.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable

from taskbot.core.occurrence import next_occurrence
from taskbot.ports.store_port import TaskNotFound

if TYPE_CHECKING:
    from taskbot.data.models import RecurrenceRule, RecurringTask
    from taskbot.ports.store_port import RecurringTaskStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecurringTaskService:
    """Management operations on recurring task definitions."""

    def __init__(
        self,
        store: RecurringTaskStore,
        operational_offset: timedelta | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if operational_offset is None:
            from taskbot.config import settings
            operational_offset = settings.operational_offset

        self._store = store
        self._offset = operational_offset
        self._clock = clock

    def _next_from_now(self, rule: RecurrenceRule) -> datetime:
        return next_occurrence(rule, self._clock(), self._offset)

    def create_task(
        self,
        chat_id: str,
        creator_id: str,
        assignee_id: str,
        task_title: str,
        rule: RecurrenceRule,
        assignee_mention: str | None = None,
    ) -> RecurringTask:
        """Create a task whose first reminder is the next occurrence after now."""
        if not task_title.strip():
            raise ValueError("task_title must not be empty")
        return self._store.create_recurring_task(
            chat_id=chat_id,
            creator_id=creator_id,
            assignee_id=assignee_id,
            assignee_mention=assignee_mention,
            task_title=task_title.strip(),
            rule=rule,
            next_send_at=self._next_from_now(rule),
        )

    def get_task(self, task_id: int) -> RecurringTask | None:
        return self._store.get_recurring_task_by_id(task_id)

    def list_tasks(self, active_only: bool = False) -> list[RecurringTask]:
        return self._store.get_all_recurring_tasks(active_only=active_only)

    def update_task(
        self,
        task_id: int,
        rule: RecurrenceRule | None = None,
        task_title: str | None = None,
        assignee_id: str | None = None,
        assignee_mention: str | None = None,
    ) -> RecurringTask:
        """Edit a task. A new rule reschedules it from now.

        Raises:
            TaskNotFound: no task with this id.
        """
        fields: dict = {}
        if rule is not None:
            fields["rule"] = rule
            fields["next_send_at"] = self._next_from_now(rule)
        if task_title is not None:
            if not task_title.strip():
                raise ValueError("task_title must not be empty")
            fields["task_title"] = task_title.strip()
        if assignee_id is not None:
            fields["assignee_id"] = assignee_id
        if assignee_mention is not None:
            fields["assignee_mention"] = assignee_mention

        task = self._store.update_recurring_task(task_id, **fields)
        logger.info("Recurring task #%d edited: %s", task_id, ", ".join(sorted(fields)) or "no changes")
        return task

    def deactivate(self, task_id: int) -> RecurringTask:
        """Pause a task. It stops appearing in due queries until reactivated."""
        task = self._store.update_recurring_task(task_id, is_active=False)
        logger.info("Recurring task #%d paused", task_id)
        return task

    def reactivate(self, task_id: int) -> RecurringTask:
        """Resume a paused task from the next occurrence after now.

        Cycles missed while paused are not replayed.
        """
        task = self._store.get_recurring_task_by_id(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        task = self._store.update_recurring_task(
            task_id, is_active=True, next_send_at=self._next_from_now(task.rule),
        )
        logger.info(
            "Recurring task #%d resumed, next send %s",
            task_id, task.next_send_at.isoformat(),
        )
        return task

    def delete_task(self, task_id: int) -> bool:
        """Delete a task permanently. Completion history is kept."""
        return self._store.delete_recurring_task(task_id)
