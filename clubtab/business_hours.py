"""
Business-day calendar.

A business day opens at 19:00 and closes at 09:00 the next calendar day. It is
named after the calendar date it opens on, so 2025-03-23 08:59 still belongs
to business day ``2025-03-22``. Every caller that needs "today" goes through
``today()`` rather than the calendar date.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta

from clubtab.clock import Clock
from clubtab.config import BUSINESS_END, BUSINESS_START, RESET_FALLBACK_TIME, RESET_TIME, RESET_WINDOW_SECONDS

DATE_FORMAT = "%Y-%m-%d"
_INFO_FORMAT = "%Y-%m-%d %H:%M:%S"


def _as_date(day: str | date) -> date:
    if isinstance(day, datetime):
        return day.date()
    if isinstance(day, date):
        return day
    return datetime.strptime(day, DATE_FORMAT).date()


def _at(day: date, hour_minute: tuple[int, int]) -> datetime:
    return datetime.combine(day, time(*hour_minute))


def business_date_of(instant: datetime) -> str:
    """Return the business day (yyyy-mm-dd) that owns ``instant``."""
    day = instant.date()
    if instant.hour < BUSINESS_START[0]:
        day -= timedelta(days=1)
    return day.strftime(DATE_FORMAT)


def today(clock: Clock) -> str:
    """Return the current business day according to ``clock``."""
    return business_date_of(clock.now())


def day_start(day: str | date) -> datetime:
    """Opening instant of a business day (the day itself at 19:00)."""
    return _at(_as_date(day), BUSINESS_START)


def day_end(day: str | date) -> datetime:
    """Closing instant of a business day (the following day at 09:00)."""
    return _at(_as_date(day) + timedelta(days=1), BUSINESS_END)


def is_within_business_hours(instant: datetime) -> bool:
    day = business_date_of(instant)
    return day_start(day) <= instant < day_end(day)


def reset_instant(instant: datetime) -> datetime:
    """Daily state-reset instant (17:00) on the calendar day of ``instant``."""
    return _at(instant.date(), RESET_TIME)


def reset_fallback_instant(instant: datetime) -> datetime:
    """Fallback reset instant (17:05) on the calendar day of ``instant``."""
    return _at(instant.date(), RESET_FALLBACK_TIME)


def is_reset_time(instant: datetime) -> bool:
    """True when ``instant`` is within a minute of either reset instant."""
    window = timedelta(seconds=RESET_WINDOW_SECONDS)
    return (
        abs(instant - reset_instant(instant)) < window
        or abs(instant - reset_fallback_instant(instant)) < window
    )


def time_until_next_reset(instant: datetime) -> timedelta:
    reset = reset_instant(instant)
    fallback = reset_fallback_instant(instant)
    if instant >= fallback:
        return reset + timedelta(days=1) - instant
    if instant >= reset:
        return fallback - instant
    return reset - instant


def time_until_next_business_day(instant: datetime) -> timedelta:
    start = day_start(business_date_of(instant))
    if instant > start:
        return start + timedelta(days=1) - instant
    return start - instant


def time_until_business_end(instant: datetime) -> timedelta:
    return day_end(business_date_of(instant)) - instant


def business_day_info(instant: datetime) -> dict[str, object]:
    """Snapshot of every derived instant, for diagnostics."""
    day = business_date_of(instant)
    return {
        "current_time": instant.strftime(_INFO_FORMAT),
        "business_date": day,
        "start_time": day_start(day).strftime(_INFO_FORMAT),
        "end_time": day_end(day).strftime(_INFO_FORMAT),
        "reset_time": reset_instant(instant).strftime(_INFO_FORMAT),
        "reset_fallback_time": reset_fallback_instant(instant).strftime(_INFO_FORMAT),
        "is_within_hours": is_within_business_hours(instant),
        "is_reset_time": is_reset_time(instant),
    }
