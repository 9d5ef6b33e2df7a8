"""
Taskbot — Data Models.

Recurring tasks and their completion history. A task's schedule is a
RecurrenceRule: one frozen dataclass per frequency, each carrying only the
fields that frequency reads. Storage keeps the rule as flat columns, so
`rule_from_fields` / `rule_to_fields` convert between the two shapes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Union


class InvalidRecurrenceRule(ValueError):
    """Raised when a recurrence rule is malformed or incomplete."""


def ensure_utc(dt: datetime) -> datetime:
    """Return `dt` as an aware UTC datetime. Naive values are taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def _is_int(value: object) -> bool:
    # bool is an int subclass but never a valid hour, minute or day
    return isinstance(value, int) and not isinstance(value, bool)


def _check_time(hour: int, minute: int) -> None:
    if not _is_int(hour) or not 0 <= hour <= 23:
        raise InvalidRecurrenceRule(f"hour must be in 0-23, got {hour!r}")
    if not _is_int(minute) or not 0 <= minute <= 59:
        raise InvalidRecurrenceRule(f"minute must be in 0-59, got {minute!r}")


@dataclass(frozen=True)
class DailyRule:
    """Fires every day at hour:minute, skipping excluded weekdays (0 = Sunday)."""

    hour: int
    minute: int = 0
    exclude_days: frozenset[int] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        _check_time(self.hour, self.minute)
        # Accept any iterable of weekdays, store as frozenset
        object.__setattr__(self, "exclude_days", frozenset(self.exclude_days))
        for day in self.exclude_days:
            if not _is_int(day) or not 0 <= day <= 6:
                raise InvalidRecurrenceRule(f"excluded day must be in 0-6, got {day!r}")
        if len(self.exclude_days) == 7:
            raise InvalidRecurrenceRule("cannot exclude every day of the week")

    @property
    def frequency(self) -> Frequency:
        return Frequency.DAILY


@dataclass(frozen=True)
class WeeklyRule:
    """Fires once a week on day_of_week (0 = Sunday) at hour:minute."""

    hour: int
    minute: int
    day_of_week: int

    def __post_init__(self) -> None:
        _check_time(self.hour, self.minute)
        if not _is_int(self.day_of_week) or not 0 <= self.day_of_week <= 6:
            raise InvalidRecurrenceRule(
                f"day_of_week must be in 0-6, got {self.day_of_week!r}"
            )

    @property
    def frequency(self) -> Frequency:
        return Frequency.WEEKLY


@dataclass(frozen=True)
class MonthlyRule:
    """Fires once a month on day_of_month at hour:minute.

    Months shorter than day_of_month fire on their last day.
    """

    hour: int
    minute: int
    day_of_month: int

    def __post_init__(self) -> None:
        _check_time(self.hour, self.minute)
        if not _is_int(self.day_of_month) or not 1 <= self.day_of_month <= 31:
            raise InvalidRecurrenceRule(
                f"day_of_month must be in 1-31, got {self.day_of_month!r}"
            )

    @property
    def frequency(self) -> Frequency:
        return Frequency.MONTHLY


RecurrenceRule = Union[DailyRule, WeeklyRule, MonthlyRule]


def parse_exclude_days(raw: str | None) -> frozenset[int]:
    """Parse the stored "0,6" form into a set of weekdays."""
    if raw is None or not raw.strip():
        return frozenset()
    days: set[int] = set()
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            days.add(int(part))
        except ValueError:
            raise InvalidRecurrenceRule(f"invalid excluded day: {part!r}") from None
    return frozenset(days)


def format_exclude_days(days: frozenset[int]) -> str | None:
    """Inverse of parse_exclude_days; None when nothing is excluded."""
    if not days:
        return None
    return ",".join(str(d) for d in sorted(days))


def rule_from_fields(
    frequency: str,
    hour: int,
    minute: int,
    day_of_week: int | None = None,
    day_of_month: int | None = None,
    exclude_days: str | frozenset[int] | None = None,
) -> RecurrenceRule:
    """Build the rule variant for `frequency` from flat column values.

    Fields irrelevant to the frequency are ignored; a missing required field
    raises InvalidRecurrenceRule instead of falling back to a default.
    """
    try:
        freq = Frequency(frequency)
    except ValueError:
        raise InvalidRecurrenceRule(f"unknown frequency: {frequency!r}") from None

    if freq is Frequency.DAILY:
        if isinstance(exclude_days, str) or exclude_days is None:
            excluded = parse_exclude_days(exclude_days)
        else:
            excluded = frozenset(exclude_days)
        return DailyRule(hour=hour, minute=minute, exclude_days=excluded)

    if freq is Frequency.WEEKLY:
        if day_of_week is None:
            raise InvalidRecurrenceRule("weekly rule requires day_of_week")
        return WeeklyRule(hour=hour, minute=minute, day_of_week=day_of_week)

    if day_of_month is None:
        raise InvalidRecurrenceRule("monthly rule requires day_of_month")
    return MonthlyRule(hour=hour, minute=minute, day_of_month=day_of_month)


def rule_to_fields(rule: RecurrenceRule) -> dict:
    """Flatten a rule into storage columns (irrelevant columns are None)."""
    fields = {
        "frequency": rule.frequency.value,
        "hour": rule.hour,
        "minute": rule.minute,
        "day_of_week": None,
        "day_of_month": None,
        "exclude_days": None,
    }
    if isinstance(rule, DailyRule):
        fields["exclude_days"] = format_exclude_days(rule.exclude_days)
    elif isinstance(rule, WeeklyRule):
        fields["day_of_week"] = rule.day_of_week
    elif isinstance(rule, MonthlyRule):
        fields["day_of_month"] = rule.day_of_month
    else:
        raise InvalidRecurrenceRule(f"not a recurrence rule: {rule!r}")
    return fields


@dataclass
class RecurringTask:
    """A reminder that repeats on a RecurrenceRule and pings an assignee in a chat."""

    id: int
    chat_id: str
    creator_id: str
    assignee_id: str
    task_title: str
    rule: RecurrenceRule
    next_send_at: datetime             # UTC, always produced by the occurrence calculator
    created_at: datetime               # UTC
    assignee_mention: str | None = None  # e.g. "@tanaka"
    is_active: bool = field(default=True)
    last_sent_at: datetime | None = None


@dataclass
class RecurringTaskCompletion:
    """An immutable record that one occurrence of a task was done."""

    id: int
    recurring_task_id: int
    chat_id: str
    completed_by: str
    scheduled_at: datetime             # the occurrence this completion answers
    completed_at: datetime
    completed_by_name: str | None = None
    note: str | None = None


@dataclass
class CompletionRecord:
    """A completion joined with its task's display fields, for reports.

    task_id / task_title are None once the task itself has been deleted.
    """

    completion: RecurringTaskCompletion
    task_id: int | None = None
    task_title: str | None = None
