"""Tests for taskbot.core.occurrence — next occurrence arithmetic."""

import time

import pytest
from datetime import datetime, timedelta, timezone

from taskbot.core.occurrence import local_weekday, next_occurrence, to_operational
from taskbot.data.models import DailyRule, InvalidRecurrenceRule, MonthlyRule, WeeklyRule

UTC8 = timedelta(hours=8)
TZ8 = timezone(UTC8)


def _local(*args):
    """A wall-clock instant in the UTC+8 operational frame."""
    return datetime(*args, tzinfo=TZ8)


# 2026-01-26 is a Monday.


class TestWeekly:
    RULE = WeeklyRule(hour=14, minute=30, day_of_week=1)

    def test_same_day_later_time(self):
        result = next_occurrence(self.RULE, _local(2026, 1, 26, 14, 0), UTC8)
        assert result == _local(2026, 1, 26, 14, 30)

    def test_same_day_after_time_moves_a_week(self):
        result = next_occurrence(self.RULE, _local(2026, 1, 26, 15, 0), UTC8)
        assert result == _local(2026, 2, 2, 14, 30)

    def test_exactly_at_occurrence_moves_a_week(self):
        result = next_occurrence(self.RULE, _local(2026, 1, 26, 14, 30), UTC8)
        assert result == _local(2026, 2, 2, 14, 30)

    def test_earlier_in_week(self):
        # Saturday -> the coming Monday
        result = next_occurrence(self.RULE, _local(2026, 1, 31, 9, 0), UTC8)
        assert result == _local(2026, 2, 2, 14, 30)

    def test_weekday_taken_in_operational_frame(self):
        # Sunday 20:00 UTC is already Monday 04:00 in UTC+8
        now = datetime(2026, 1, 25, 20, 0, tzinfo=timezone.utc)
        result = next_occurrence(self.RULE, now, UTC8)
        assert result == datetime(2026, 1, 26, 6, 30, tzinfo=timezone.utc)


class TestMonthly:
    def test_later_this_month(self):
        rule = MonthlyRule(hour=10, minute=0, day_of_month=15)
        result = next_occurrence(rule, _local(2026, 3, 10, 9, 0), UTC8)
        assert result == _local(2026, 3, 15, 10, 0)

    def test_passed_this_month(self):
        rule = MonthlyRule(hour=10, minute=0, day_of_month=15)
        result = next_occurrence(rule, _local(2026, 3, 15, 10, 0), UTC8)
        assert result == _local(2026, 4, 15, 10, 0)

    def test_december_rolls_into_next_year(self):
        rule = MonthlyRule(hour=10, minute=0, day_of_month=15)
        result = next_occurrence(rule, _local(2026, 12, 20, 8, 0), UTC8)
        assert result == _local(2027, 1, 15, 10, 0)

    def test_day_31_clamps_in_30_day_month(self):
        rule = MonthlyRule(hour=10, minute=0, day_of_month=31)
        result = next_occurrence(rule, _local(2026, 4, 1, 8, 0), UTC8)
        assert result == _local(2026, 4, 30, 10, 0)

    def test_february_clamps_to_28(self):
        rule = MonthlyRule(hour=10, minute=0, day_of_month=30)
        result = next_occurrence(rule, _local(2026, 1, 31, 8, 0), UTC8)
        assert result == _local(2026, 2, 28, 10, 0)

    def test_february_leap_year_clamps_to_29(self):
        rule = MonthlyRule(hour=10, minute=0, day_of_month=31)
        result = next_occurrence(rule, _local(2028, 2, 1, 8, 0), UTC8)
        assert result == _local(2028, 2, 29, 10, 0)

    def test_clamped_day_passed_moves_to_next_month_full_day(self):
        rule = MonthlyRule(hour=10, minute=0, day_of_month=31)
        result = next_occurrence(rule, _local(2026, 4, 30, 11, 0), UTC8)
        assert result == _local(2026, 5, 31, 10, 0)


class TestDaily:
    def test_later_today(self):
        result = next_occurrence(DailyRule(hour=9), _local(2026, 1, 26, 8, 0), UTC8)
        assert result == _local(2026, 1, 26, 9, 0)

    def test_exactly_now_moves_to_tomorrow(self):
        result = next_occurrence(DailyRule(hour=9), _local(2026, 1, 26, 9, 0), UTC8)
        assert result == _local(2026, 1, 27, 9, 0)

    def test_skips_weekend(self):
        rule = DailyRule(hour=9, exclude_days=frozenset({0, 6}))
        # Friday after 9:00 -> Monday
        result = next_occurrence(rule, _local(2026, 1, 30, 10, 0), UTC8)
        assert result == _local(2026, 2, 2, 9, 0)

    def test_excluded_today_never_returned(self):
        rule = DailyRule(hour=9, exclude_days=frozenset({6}))
        # Saturday 8:00: today's 9:00 is in the future but excluded
        result = next_occurrence(rule, _local(2026, 1, 31, 8, 0), UTC8)
        assert result == _local(2026, 2, 1, 9, 0)

    @pytest.mark.parametrize("start_day", range(26, 33))
    def test_result_weekday_never_excluded(self, start_day):
        rule = DailyRule(hour=9, exclude_days=frozenset({1, 2, 3}))
        now = _local(2026, 1, 1, 12, 0) + timedelta(days=start_day - 1)
        result = next_occurrence(rule, now, UTC8)
        assert local_weekday(result, UTC8) not in rule.exclude_days


class TestNextOccurrenceContract:
    RULES = [
        DailyRule(hour=0, minute=0),
        DailyRule(hour=23, minute=59, exclude_days=frozenset({0})),
        WeeklyRule(hour=0, minute=0, day_of_week=0),
        WeeklyRule(hour=23, minute=59, day_of_week=6),
        MonthlyRule(hour=0, minute=0, day_of_month=1),
        MonthlyRule(hour=23, minute=59, day_of_month=31),
    ]
    NOWS = [
        datetime(2026, 1, 1, 0, 0, tzinfo=timezone.utc),
        datetime(2026, 2, 28, 15, 59, 59, 999999, tzinfo=timezone.utc),
        datetime(2026, 12, 31, 16, 0, tzinfo=timezone.utc),
        datetime(2028, 2, 29, 23, 59, tzinfo=timezone.utc),
    ]

    @pytest.mark.parametrize("rule", RULES)
    @pytest.mark.parametrize("now", NOWS)
    def test_strictly_after_now(self, rule, now):
        result = next_occurrence(rule, now, UTC8)
        assert result > now
        assert result.tzinfo == timezone.utc

    @pytest.mark.parametrize("rule", RULES)
    def test_lands_on_rule_time(self, rule):
        result = to_operational(next_occurrence(rule, self.NOWS[1], UTC8), UTC8)
        assert (result.hour, result.minute, result.second, result.microsecond) == (
            rule.hour, rule.minute, 0, 0,
        )

    def test_returns_utc(self):
        result = next_occurrence(DailyRule(hour=9), _local(2026, 1, 26, 8, 0), UTC8)
        assert result == datetime(2026, 1, 26, 1, 0, tzinfo=timezone.utc)
        assert result.tzinfo == timezone.utc

    def test_offset_is_explicit(self):
        now = datetime(2026, 1, 26, 0, 0, tzinfo=timezone.utc)
        assert next_occurrence(DailyRule(hour=9), now, timedelta(0)) == datetime(
            2026, 1, 26, 9, 0, tzinfo=timezone.utc
        )
        assert next_occurrence(DailyRule(hour=9), now, UTC8) == datetime(
            2026, 1, 26, 1, 0, tzinfo=timezone.utc
        )

    def test_naive_now_taken_as_utc(self):
        naive = datetime(2026, 1, 26, 0, 0)
        aware = naive.replace(tzinfo=timezone.utc)
        rule = WeeklyRule(hour=14, minute=30, day_of_week=1)
        assert next_occurrence(rule, naive, UTC8) == next_occurrence(rule, aware, UTC8)

    def test_not_a_rule(self):
        with pytest.raises(InvalidRecurrenceRule):
            next_occurrence("daily", datetime(2026, 1, 1, tzinfo=timezone.utc), UTC8)


@pytest.fixture
def host_tz(monkeypatch):
    """Switch the process timezone, restoring it afterwards."""

    def _set(name):
        monkeypatch.setenv("TZ", name)
        time.tzset()

    yield _set
    monkeypatch.undo()
    time.tzset()


@pytest.mark.skipif(not hasattr(time, "tzset"), reason="time.tzset unavailable")
class TestHostTimezoneIndependence:
    @pytest.mark.parametrize("tz_name", ["UTC", "America/New_York", "Asia/Kolkata"])
    def test_same_result_in_any_host_tz(self, host_tz, tz_name):
        rule = WeeklyRule(hour=14, minute=30, day_of_week=1)
        now = datetime(2026, 1, 25, 20, 0, tzinfo=timezone.utc)
        host_tz(tz_name)
        assert next_occurrence(rule, now, UTC8) == datetime(
            2026, 1, 26, 6, 30, tzinfo=timezone.utc
        )
