"""Store port — the persistence contract the scheduler core relies on.

Rows are atomic individually; the core never needs a multi-row transaction.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from taskbot.data.models import (
    CompletionRecord,
    RecurrenceRule,
    RecurringTask,
    RecurringTaskCompletion,
)


class StoreUnavailable(Exception):
    """Raised when the backing store cannot be reached or fails a query."""


class TaskNotFound(LookupError):
    """Raised by id-keyed mutations when no recurring task matches."""

    def __init__(self, task_id: int) -> None:
        super().__init__(f"Recurring task {task_id} not found")
        self.task_id = task_id


class RecurringTaskStore(Protocol):
    """Persistence for recurring task definitions and completion records."""

    def create_recurring_task(
        self,
        chat_id: str,
        creator_id: str,
        assignee_id: str,
        task_title: str,
        rule: RecurrenceRule,
        next_send_at: datetime,
        assignee_mention: str | None = None,
        is_active: bool = True,
    ) -> RecurringTask: ...

    def get_recurring_task_by_id(self, task_id: int) -> RecurringTask | None: ...

    def get_all_recurring_tasks(self, active_only: bool = False) -> list[RecurringTask]: ...

    def get_due_recurring_tasks(self, now: datetime) -> list[RecurringTask]: ...

    def update_recurring_task(self, task_id: int, **fields) -> RecurringTask: ...

    def delete_recurring_task(self, task_id: int) -> bool: ...

    def create_recurring_task_completion(
        self,
        recurring_task_id: int,
        chat_id: str,
        completed_by: str,
        scheduled_at: datetime,
        completed_by_name: str | None = None,
        note: str | None = None,
    ) -> int: ...

    def get_completion_for_cycle(
        self, task_id: int, scheduled_at: datetime
    ) -> RecurringTaskCompletion | None: ...

    def get_completions_by_task_id(self, task_id: int) -> list[RecurringTaskCompletion]: ...

    def get_recent_completions(self, limit: int) -> list[CompletionRecord]: ...

    def get_completions_by_date_range(
        self, start: datetime, end: datetime
    ) -> list[CompletionRecord]: ...
