"""Calendar helpers operating on integer epoch-second timestamps.

Every function takes an optional ``tz``. ``None`` means the system local
calendar, which is what the tracker uses unless a zone is configured. Day
arithmetic is done on calendar dates and converted back, so days that are
shorter or longer than 86400 seconds (DST transitions) come out right.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional


def _local_date(timestamp: int, tz: Optional[tzinfo]) -> date:
    return datetime.fromtimestamp(timestamp, tz).date()


def _midnight(day: date, tz: Optional[tzinfo]) -> int:
    return int(datetime.combine(day, time.min, tzinfo=tz).timestamp())


def start_of_day(timestamp: int, tz: Optional[tzinfo] = None) -> int:
    return _midnight(_local_date(timestamp, tz), tz)


def start_of_next_day(timestamp: int, tz: Optional[tzinfo] = None) -> int:
    return _midnight(_local_date(timestamp, tz) + timedelta(days=1), tz)


def end_of_day(timestamp: int, tz: Optional[tzinfo] = None) -> int:
    """Last whole second of the day containing ``timestamp``."""
    return start_of_next_day(timestamp, tz) - 1


def start_of_trailing_window(
    timestamp: int, n_days: int, tz: Optional[tzinfo] = None
) -> int:
    """Start of the window made of today and the previous ``n_days - 1`` days."""
    if n_days < 1:
        raise ValueError(f"n_days must be at least 1, got {n_days}")
    first_day = _local_date(timestamp, tz) - timedelta(days=n_days - 1)
    return _midnight(first_day, tz)


def start_of_date(year: int, month: int, day: int, tz: Optional[tzinfo] = None) -> int:
    return _midnight(date(year, month, day), tz)


def date_components(timestamp: int, tz: Optional[tzinfo] = None) -> tuple[int, int, int]:
    local = _local_date(timestamp, tz)
    return local.year, local.month, local.day
