"""Completion tracker — append-only history of finished occurrences.

A completion ties an actor to one occurrence (scheduled_at) of a recurring
task. Rows are never updated or deleted; recording the same occurrence again
returns the id of the row already stored.

Ordering: every list is most recent first (completed_at descending, ties
broken by newest id).
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from taskbot.ports.store_port import TaskNotFound

if TYPE_CHECKING:
    from taskbot.data.models import CompletionRecord, RecurringTaskCompletion
    from taskbot.ports.store_port import RecurringTaskStore

logger = logging.getLogger(__name__)


class CompletionTracker:
    """Records and reports completions of recurring task occurrences."""

    def __init__(self, store: RecurringTaskStore, default_limit: int | None = None) -> None:
        if default_limit is None:
            from taskbot.config import settings
            default_limit = settings.RECENT_COMPLETIONS_LIMIT

        self._store = store
        self._default_limit = default_limit

    def record_completion(
        self,
        task_id: int,
        scheduled_at: datetime,
        completed_by: str,
        completed_by_name: str | None = None,
        chat_id: str | None = None,
        note: str | None = None,
    ) -> int:
        """Record that `completed_by` finished the occurrence at `scheduled_at`.

        Args:
            task_id: The recurring task the occurrence belongs to.
            scheduled_at: The occurrence instant, as sent in the reminder.
            completed_by: Opaque actor id (e.g. Telegram user id).
            completed_by_name: Display name for reports.
            chat_id: Chat the completion came from; defaults to the task's chat.
            note: Optional free text.

        Returns:
            The completion id (the existing one if this occurrence was
            already completed).

        Raises:
            TaskNotFound: the task does not exist (e.g. deleted since the
                reminder was sent).
        """
        task = self._store.get_recurring_task_by_id(task_id)
        if task is None:
            raise TaskNotFound(task_id)

        return self._store.create_recurring_task_completion(
            recurring_task_id=task_id,
            chat_id=chat_id or task.chat_id,
            completed_by=completed_by,
            completed_by_name=completed_by_name,
            scheduled_at=scheduled_at,
            note=note,
        )

    def is_cycle_completed(self, task_id: int, scheduled_at: datetime) -> bool:
        return self._store.get_completion_for_cycle(task_id, scheduled_at) is not None

    def completions_for_task(self, task_id: int) -> list[RecurringTaskCompletion]:
        return self._store.get_completions_by_task_id(task_id)

    def recent_completions(self, limit: int | None = None) -> list[CompletionRecord]:
        """Latest completions across all tasks, each with its task title."""
        if limit is None:
            limit = self._default_limit
        if limit < 1:
            return []
        return self._store.get_recent_completions(limit)

    def completions_between(self, start: datetime, end: datetime) -> list[CompletionRecord]:
        """Completions recorded between start and end (inclusive)."""
        if end < start:
            raise ValueError("end must not be before start")
        return self._store.get_completions_by_date_range(start, end)
