"""Tests for next-run calculation."""

from datetime import datetime, timezone

import pytest

from llmscrawl.schemas.config import ScheduleConfig
from llmscrawl.services.schedule import calculate_next_run, next_run_for

# Wednesday
NOW = datetime(2026, 10, 14, 12, 0)


def test_daily_later_today():
    assert calculate_next_run("daily", "18:00", now=NOW) == datetime(2026, 10, 14, 18, 0)


def test_daily_tomorrow():
    assert calculate_next_run("daily", "06:30", now=NOW) == datetime(2026, 10, 15, 6, 30)


def test_result_is_strictly_after_now():
    """Test a run due exactly now is pushed to the next occurrence."""
    assert calculate_next_run("daily", "12:00", now=NOW) == datetime(2026, 10, 15, 12, 0)


def test_two_days_uses_even_day_of_year():
    next_run = calculate_next_run("two_days", "00:00", now=NOW)

    assert next_run == datetime(2026, 10, 15, 0, 0)
    assert next_run.timetuple().tm_yday % 2 == 0


def test_two_days_skips_odd_days_across_year_end():
    """Test Dec 31 of a common year (day 365) and Jan 1 (day 1) are both skipped."""
    next_run = calculate_next_run("two_days", "00:00", now=datetime(2025, 12, 30, 12, 0))

    assert next_run == datetime(2026, 1, 2, 0, 0)
    assert next_run.timetuple().tm_yday == 2


def test_weekly_lands_on_monday():
    assert calculate_next_run("weekly", "00:00", now=NOW) == datetime(2026, 10, 19, 0, 0)


def test_weekly_same_monday_before_time():
    monday_morning = datetime(2026, 10, 19, 8, 0)

    assert calculate_next_run("weekly", "09:00", now=monday_morning) == datetime(2026, 10, 19, 9, 0)


def test_two_weeks_lands_on_even_iso_week():
    next_run = calculate_next_run("two_weeks", "00:00", now=NOW)

    assert next_run == datetime(2026, 10, 26, 0, 0)
    assert next_run.weekday() == 0
    assert next_run.isocalendar()[1] % 2 == 0


def test_two_weeks_skips_odd_iso_weeks_across_year_end():
    """Test ISO week 53 of 2026 and week 1 of 2027 are both skipped."""
    next_run = calculate_next_run("two_weeks", "00:00", now=datetime(2026, 12, 27, 12, 0))

    assert next_run == datetime(2027, 1, 11, 0, 0)
    assert next_run.isocalendar()[1] == 2


def test_monthly_first_of_next_month():
    assert calculate_next_run("monthly", "00:00", now=NOW) == datetime(2026, 11, 1, 0, 0)


def test_monthly_rolls_over_year():
    assert calculate_next_run("monthly", "00:00", now=datetime(2026, 12, 5)) == datetime(2027, 1, 1, 0, 0)


def test_time_of_day_in_configured_timezone():
    """Test 09:00 New York (EDT) is 13:00 UTC."""
    next_run = calculate_next_run("daily", "09:00", tz_name="America/New_York", now=NOW)

    assert next_run == datetime(2026, 10, 14, 13, 0)


def test_aware_now_is_accepted():
    aware = NOW.replace(tzinfo=timezone.utc)

    assert calculate_next_run("daily", "18:00", now=aware) == datetime(2026, 10, 14, 18, 0)


def test_unknown_schedule_type():
    with pytest.raises(ValueError):
        calculate_next_run("hourly", "00:00", now=NOW)


def test_next_run_for_schedule_config():
    schedule = ScheduleConfig(type="weekly", time_of_day="00:00", timezone="UTC")

    assert next_run_for(schedule, now=NOW) == datetime(2026, 10, 19, 0, 0)
