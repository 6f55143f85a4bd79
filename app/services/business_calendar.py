"""
Business-day arithmetic for ticket deadlines.

All deadline comparisons happen at day resolution: a due date is met as long as
"now" is still on or before that calendar day.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Union

from app.config import settings

DateLike = Union[date, datetime]

SATURDAY = 5


def utc_now() -> datetime:
    """Current UTC time as a naive datetime (the store keeps naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_day(value: DateLike) -> date:
    """Truncate a datetime to its calendar day; dates pass through unchanged."""
    if isinstance(value, datetime):
        return value.date()
    return value


def is_business_day(value: DateLike) -> bool:
    return value.weekday() < SATURDAY


def add_business_days(start: DateLike, days: int) -> DateLike:
    """
    Walk forward one calendar day at a time, skipping Saturday and Sunday,
    until `days` weekdays have been counted.

    The start day itself is never counted, so adding 1 business day to a Friday
    gives the following Monday. Adding 0 returns `start` unchanged, even on a weekend.
    """
    if days < 0:
        raise ValueError(f"days must be non-negative, got {days}")

    current = start
    counted = 0
    while counted < days:
        current = current + timedelta(days=1)
        if is_business_day(current):
            counted += 1
    return current


def default_due_date(today: DateLike) -> date:
    """Due date offered when a ticket is registered without one."""
    return to_day(add_business_days(to_day(today), settings.default_due_business_days))


def plan_deadline_ceiling(original_due_date: DateLike) -> date:
    """Latest date a processing plan may promise."""
    return to_day(add_business_days(to_day(original_due_date), settings.plan_grace_business_days))


def postponement_floor(current_due_date: DateLike) -> date:
    """Earliest date a postponement may request."""
    return to_day(add_business_days(to_day(current_due_date), 1))


def is_overdue(due_date: DateLike, now: DateLike) -> bool:
    """True once `now` is strictly past the end of the due date's calendar day."""
    return to_day(now) > to_day(due_date)


def d_day_label(due_date: DateLike, today: DateLike) -> str:
    """Countdown badge: 'D-3' before the deadline, 'D-Day' on it, 'D+2' after it."""
    diff = (to_day(due_date) - to_day(today)).days
    if diff == 0:
        return "D-Day"
    if diff > 0:
        return f"D-{diff}"
    return f"D+{abs(diff)}"
