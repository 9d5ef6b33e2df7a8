"""Tests for taskbot.core.recurring_tasks — RecurringTaskService."""

import pytest
from datetime import datetime, timedelta, timezone

from taskbot.data.models import DailyRule, InvalidRecurrenceRule, MonthlyRule, WeeklyRule
from taskbot.ports.store_port import TaskNotFound

TZ8 = timezone(timedelta(hours=8))

# Matches the clock of the `service` fixture: Monday 2026-01-26 14:00 in UTC+8
FIXED_NOW = datetime(2026, 1, 26, 6, 0, tzinfo=timezone.utc)


def _create(service, rule=None, title="Submit the weekly report"):
    return service.create_task(
        chat_id="-100123",
        creator_id="12345",
        assignee_id="tanaka",
        assignee_mention="@tanaka",
        task_title=title,
        rule=rule or WeeklyRule(hour=14, minute=30, day_of_week=1),
    )


class TestCreateTask:
    def test_first_send_is_next_occurrence(self, service):
        task = _create(service)
        assert task.next_send_at == datetime(2026, 1, 26, 14, 30, tzinfo=TZ8)
        assert task.next_send_at > FIXED_NOW

    def test_persisted(self, service, task_db):
        task = _create(service)
        assert task_db.get_recurring_task_by_id(task.id).task_title == task.task_title

    def test_title_stripped(self, service):
        assert _create(service, title="  Water plants  ").task_title == "Water plants"

    def test_empty_title_rejected(self, service):
        with pytest.raises(ValueError):
            _create(service, title="   ")

    def test_invalid_rule_surfaces_at_creation(self, service):
        with pytest.raises(InvalidRecurrenceRule):
            _create(service, rule=WeeklyRule(hour=14, minute=30, day_of_week=9))


class TestUpdateTask:
    def test_rule_change_reschedules_from_now(self, service):
        task = _create(service)
        updated = service.update_task(task.id, rule=DailyRule(hour=18))
        assert updated.rule == DailyRule(hour=18)
        assert updated.next_send_at == datetime(2026, 1, 26, 18, 0, tzinfo=TZ8)

    def test_title_change_keeps_schedule(self, service):
        task = _create(service)
        updated = service.update_task(task.id, task_title="New title")
        assert updated.task_title == "New title"
        assert updated.next_send_at == task.next_send_at

    def test_unknown_task(self, service):
        with pytest.raises(TaskNotFound):
            service.update_task(999, task_title="x")


class TestPauseResume:
    def test_deactivate(self, service, task_db):
        task = _create(service)
        assert service.deactivate(task.id).is_active is False
        assert task_db.get_due_recurring_tasks(FIXED_NOW + timedelta(days=30)) == []

    def test_reactivate_skips_missed_cycles(self, task_db):
        from taskbot.core.recurring_tasks import RecurringTaskService

        clock = {"now": FIXED_NOW}
        service = RecurringTaskService(
            task_db, operational_offset=timedelta(hours=8), clock=lambda: clock["now"],
        )
        task = _create(service, rule=MonthlyRule(hour=10, minute=0, day_of_month=1))
        service.deactivate(task.id)

        clock["now"] = datetime(2026, 5, 20, tzinfo=timezone.utc)
        resumed = service.reactivate(task.id)
        assert resumed.is_active is True
        assert resumed.next_send_at == datetime(2026, 6, 1, 10, 0, tzinfo=TZ8)

    def test_reactivate_unknown(self, service):
        with pytest.raises(TaskNotFound):
            service.reactivate(999)

    def test_deactivate_unknown(self, service):
        with pytest.raises(TaskNotFound):
            service.deactivate(999)


class TestDeleteAndList:
    def test_delete(self, service):
        task = _create(service)
        assert service.delete_task(task.id) is True
        assert service.get_task(task.id) is None
        assert service.delete_task(task.id) is False

    def test_list(self, service):
        a = _create(service, title="A")
        b = _create(service, title="B")
        service.deactivate(a.id)
        assert [t.id for t in service.list_tasks()] == [b.id, a.id]
        assert [t.id for t in service.list_tasks(active_only=True)] == [b.id]
