"""Schedule formatter — human-readable schedules and reminder text.

Pure functions shared by the reminder dispatcher and the chat commands.
The exclusion clause lists weekdays in the same numbering the occurrence
calculator skips (0 = Sunday).
"""

from __future__ import annotations

from datetime import datetime, timedelta

from taskbot.core.occurrence import to_operational
from taskbot.data.models import (
    DailyRule,
    InvalidRecurrenceRule,
    MonthlyRule,
    RecurrenceRule,
    RecurringTask,
    WeeklyRule,
)

WEEKDAY_NAMES = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)


def format_time(hour: int, minute: int) -> str:
    """9, 5 -> "9:05". Hours unpadded, minutes always two digits."""
    return f"{hour}:{minute:02d}"


def format_schedule(rule: RecurrenceRule) -> str:
    """Describe when a rule fires, e.g. "Every Monday at 14:30".

    Raises:
        InvalidRecurrenceRule: `rule` is not one of the rule variants.
    """
    if not isinstance(rule, (DailyRule, WeeklyRule, MonthlyRule)):
        raise InvalidRecurrenceRule(f"not a recurrence rule: {rule!r}")

    time = format_time(rule.hour, rule.minute)

    if isinstance(rule, DailyRule):
        text = f"Every day at {time}"
        if rule.exclude_days:
            names = ", ".join(WEEKDAY_NAMES[d] for d in sorted(rule.exclude_days))
            text += f" (except {names})"
        return text
    if isinstance(rule, WeeklyRule):
        return f"Every {WEEKDAY_NAMES[rule.day_of_week]} at {time}"
    return f"Every month on day {rule.day_of_month} at {time}"


def format_local_datetime(dt: datetime, offset: timedelta) -> str:
    """Render an instant in the operational frame, e.g. "Mon 2026-01-26 14:30 (UTC+8)"."""
    local = to_operational(dt, offset)
    hours = offset.total_seconds() / 3600
    label = f"UTC{hours:+g}" if hours else "UTC"
    return (
        f"{WEEKDAY_NAMES[local.isoweekday() % 7][:3]} "
        f"{local:%Y-%m-%d} {format_time(local.hour, local.minute)} ({label})"
    )


def build_reminder_text(task: RecurringTask) -> str:
    """Reminder message body sent to the task's chat."""
    lines = [
        "🔔 Recurring task reminder",
        "",
        f"📝 {task.task_title}",
    ]
    if task.assignee_mention:
        lines.append(f"👤 Assignee: {task.assignee_mention}")
    lines.append(f"📅 {format_schedule(task.rule)}")
    return "\n".join(lines)
