"""
Business-day aware arithmetic on bare "HH:MM" strings.

Order times carry no date. They are resolved against ``now`` so that a tab
opened at 23:30 and running until 01:00 reads as a 90 minute stay no matter
which side of midnight the clock is on. Every function takes ``now``
explicitly.
"""

from __future__ import annotations

import re
from dataclasses import replace
from datetime import datetime, time, timedelta

from clubtab.config import BUSINESS_END, BUSINESS_START
from clubtab.errors import InvalidTimeError
from clubtab.models import Order

_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")
_OVERTIME_PREFIX = "-"
_HALF_DAY_MINUTES = 12 * 60
_DAY_MINUTES = 24 * 60


def split_time(value: str) -> tuple[int, int]:
    """Return (hour, minute) for an HH:MM string."""
    match = _TIME_RE.match(value or "")
    if match is None:
        raise InvalidTimeError(f"not an HH:MM time: {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise InvalidTimeError(f"time out of range: {value!r}")
    return hours, minutes


def parse_time(value: str, now: datetime) -> datetime:
    """
    Resolve "HH:MM" to the instant it means in the business day around ``now``.

    * now 00:00-09:00: evening inputs (>= 19:00) are dated yesterday.
    * now >= 19:00: morning inputs (< 09:00) are dated tomorrow.
    * now 09:00-19:00: morning inputs (< 09:00) are dated tomorrow.
    """
    hours, minutes = split_time(value)
    start_hour, end_hour = BUSINESS_START[0], BUSINESS_END[0]
    day = now.date()
    if now.hour < end_hour:
        if hours >= start_hour:
            day -= timedelta(days=1)
    elif hours < end_hour:
        day += timedelta(days=1)
    return datetime.combine(day, time(hours, minutes))


def format_time(instant: datetime) -> str:
    return instant.strftime("%H:%M")


def _minutes_between(start: datetime, end: datetime) -> int:
    # Whole minutes, truncated toward zero.
    return int((end - start).total_seconds() / 60)


def remaining_minutes(end_time: str, now: datetime) -> int:
    """
    Signed minutes from ``now`` until ``end_time``; negative once overtime.

    A difference beyond twelve hours means ``parse_time`` picked the wrong side
    of midnight, so the adjacent calendar day is tried and kept when it lands
    within a day of ``now``.
    """
    end = parse_time(end_time, now)
    diff = _minutes_between(now, end)
    if diff < -_HALF_DAY_MINUTES:
        alternative = _minutes_between(now, end + timedelta(days=1))
        if 0 < alternative < _DAY_MINUTES:
            diff = alternative
    elif diff > _HALF_DAY_MINUTES:
        alternative = _minutes_between(now, end - timedelta(days=1))
        if abs(alternative) < _DAY_MINUTES:
            diff = alternative
    return diff


def format_duration(minutes: int) -> str:
    """Format signed minutes as "H:MM" with a leading "-" when negative."""
    sign = _OVERTIME_PREFIX if minutes < 0 else ""
    hours, mins = divmod(abs(minutes), 60)
    return f"{sign}{hours}:{mins:02d}"


def remaining(end_time: str | None, now: datetime) -> str:
    """Countdown to ``end_time`` as signed "H:MM"; "0:00" when there is no end time."""
    if not end_time:
        return "0:00"
    return format_duration(remaining_minutes(end_time, now))


def is_overtime(remaining_value: str) -> bool:
    return remaining_value.startswith(_OVERTIME_PREFIX)


def is_within(remaining_value: str | None, minutes: int) -> bool:
    """True when a countdown is not overtime and has at most ``minutes`` left."""
    if not remaining_value or is_overtime(remaining_value):
        return False
    hours, _, mins = remaining_value.partition(":")
    if not hours.isdigit() or not mins.isdigit():
        return False
    return int(hours) * 60 + int(mins) <= minutes


def shift_time(value: str, delta_minutes: int, now: datetime) -> str:
    """Move "HH:MM" by ``delta_minutes``, wrapping across midnight."""
    return format_time(parse_time(value, now) + timedelta(minutes=delta_minutes))


def add_hours(value: str, hours: float, now: datetime) -> str:
    return format_time(parse_time(value, now) + timedelta(hours=hours))


def compare_times(a: str, b: str, now: datetime) -> int:
    """Signed minutes from ``b`` to ``a`` in business-day order; positive when ``a`` is later."""
    return _minutes_between(parse_time(b, now), parse_time(a, now))


def shift_order_times(order: Order, delta_minutes: int, now: datetime) -> Order:
    """Move an order's start, end and extension end times together by the same delta."""
    if not delta_minutes:
        return order

    def _shift(value: str) -> str:
        return shift_time(value, delta_minutes, now) if value else value

    return replace(
        order,
        start_time=_shift(order.start_time),
        end_time=_shift(order.end_time),
        extensions=tuple(replace(ext, end_time=_shift(ext.end_time)) for ext in order.extensions),
    )


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a server ISO timestamp into a naive local datetime."""
    if not value:
        return None
    try:
        instant = datetime.fromisoformat(value.replace(" ", "T", 1))
    except ValueError:
        return None
    if instant.tzinfo is not None:
        instant = instant.astimezone().replace(tzinfo=None)
    return instant
