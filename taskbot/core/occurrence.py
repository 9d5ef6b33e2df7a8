"""Occurrence calculator — pure recurrence arithmetic.

Computes the next time a recurrence rule fires, strictly after a given
instant. All wall-clock arithmetic (setting the hour, stepping days and
months) happens in one fixed operational UTC offset, so the result does not
depend on the host's local timezone. Results are returned in UTC.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta, timezone

from taskbot.data.models import (
    DailyRule,
    InvalidRecurrenceRule,
    MonthlyRule,
    RecurrenceRule,
    WeeklyRule,
    ensure_utc,
)


def to_operational(dt: datetime, offset: timedelta) -> datetime:
    """Express an instant in the fixed operational offset."""
    return ensure_utc(dt).astimezone(timezone(offset))


def local_weekday(dt: datetime, offset: timedelta) -> int:
    """Weekday of `dt` in the operational frame, 0 = Sunday .. 6 = Saturday."""
    return to_operational(dt, offset).isoweekday() % 7


def _weekday(local: datetime) -> int:
    return local.isoweekday() % 7


def _on_day_of_month(local: datetime, year: int, month: int, day_of_month: int) -> datetime:
    """Same wall-clock time on day_of_month, clamped to the month's last day."""
    last_day = calendar.monthrange(year, month)[1]
    return local.replace(year=year, month=month, day=min(day_of_month, last_day))


def _next_daily(rule: DailyRule, local_now: datetime, candidate: datetime) -> datetime:
    if candidate <= local_now:
        candidate += timedelta(days=1)
    # Excluded weekdays are skipped one day at a time
    while _weekday(candidate) in rule.exclude_days:
        candidate += timedelta(days=1)
    return candidate


def _next_weekly(rule: WeeklyRule, local_now: datetime, candidate: datetime) -> datetime:
    days_until = rule.day_of_week - _weekday(local_now)
    if days_until < 0 or (days_until == 0 and candidate <= local_now):
        days_until += 7
    return candidate + timedelta(days=days_until)


def _next_monthly(rule: MonthlyRule, local_now: datetime, candidate: datetime) -> datetime:
    candidate = _on_day_of_month(
        candidate, local_now.year, local_now.month, rule.day_of_month
    )
    if candidate <= local_now:
        year, month = local_now.year, local_now.month + 1
        if month > 12:
            year, month = year + 1, 1
        candidate = _on_day_of_month(candidate, year, month, rule.day_of_month)
    return candidate


def next_occurrence(
    rule: RecurrenceRule,
    now: datetime,
    operational_offset: timedelta,
) -> datetime:
    """Return the first occurrence of `rule` strictly after `now`, in UTC.

    Args:
        rule: A validated DailyRule, WeeklyRule or MonthlyRule.
        now: The anchor instant. Naive datetimes are taken as UTC.
        operational_offset: Fixed UTC offset the rule's hour/minute and
            weekdays are expressed in (e.g. timedelta(hours=8)).

    Raises:
        InvalidRecurrenceRule: `rule` is not one of the rule variants.
    """
    if not isinstance(rule, (DailyRule, WeeklyRule, MonthlyRule)):
        raise InvalidRecurrenceRule(f"not a recurrence rule: {rule!r}")

    local_now = to_operational(now, operational_offset)
    candidate = local_now.replace(
        hour=rule.hour, minute=rule.minute, second=0, microsecond=0
    )

    if isinstance(rule, DailyRule):
        result = _next_daily(rule, local_now, candidate)
    elif isinstance(rule, WeeklyRule):
        result = _next_weekly(rule, local_now, candidate)
    else:
        result = _next_monthly(rule, local_now, candidate)

    return result.astimezone(timezone.utc)
