"""Next-run calculation for the recurring cleanup step."""

from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from llmscrawl.schemas.config import ScheduleConfig


def calculate_next_run(
    schedule_type: str,
    time_of_day: str,
    tz_name: str = "UTC",
    now: Optional[datetime] = None,
) -> datetime:
    """
    Calculate the next scheduled run strictly after now.

    The time of day is interpreted in the schedule's timezone:
    - daily: next occurrence of the time of day
    - two_days: next occurrence on an even day of the year
    - weekly: next occurrence on a Monday
    - two_weeks: next occurrence on a Monday of an even ISO week
    - monthly: next occurrence on the first of a month

    Args:
        schedule_type: One of daily, two_days, weekly, two_weeks, monthly
        time_of_day: HH:MM in the schedule's timezone
        tz_name: IANA timezone name
        now: Reference time (aware, or naive UTC); defaults to the current time

    Returns:
        Next run as a naive UTC datetime
    """
    tz = ZoneInfo(tz_name)
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local_now = now.astimezone(tz)

    hours, minutes = (int(part) for part in time_of_day.split(":"))
    candidate = local_now.replace(hour=hours, minute=minutes, second=0, microsecond=0)
    if candidate <= local_now:
        candidate += timedelta(days=1)

    if schedule_type == "daily":
        pass
    elif schedule_type == "two_days":
        # Day 365 of a common year is followed by day 1, both odd
        while candidate.timetuple().tm_yday % 2 != 0:
            candidate += timedelta(days=1)
    elif schedule_type == "weekly":
        candidate += timedelta(days=(7 - candidate.weekday()) % 7)
    elif schedule_type == "two_weeks":
        candidate += timedelta(days=(7 - candidate.weekday()) % 7)
        while candidate.isocalendar()[1] % 2 != 0:
            candidate += timedelta(days=7)
    elif schedule_type == "monthly":
        if candidate.day != 1:
            if candidate.month == 12:
                candidate = candidate.replace(year=candidate.year + 1, month=1, day=1)
            else:
                candidate = candidate.replace(month=candidate.month + 1, day=1)
    else:
        raise ValueError(f"Unknown schedule type: {schedule_type}")

    # Re-anchor the wall-clock time in case a DST shift happened in between
    candidate = candidate.replace(tzinfo=None).replace(tzinfo=tz)
    return candidate.astimezone(timezone.utc).replace(tzinfo=None)


def next_run_for(schedule: ScheduleConfig, now: Optional[datetime] = None) -> datetime:
    return calculate_next_run(schedule.type, schedule.time_of_day, schedule.timezone, now=now)
