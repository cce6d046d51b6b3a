from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today() -> date:
    return utcnow().date()


def as_date(value: date | datetime | str | None) -> date:
    """
    Normalize a date-ish value to a calendar date.

    - None -> today (UTC)
    - datetime -> its date part (aware values are converted to UTC first)
    - "YYYY-MM-DD" or full ISO-8601 string -> parsed
    """
    if value is None:
        return today()
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        if len(s) == 10:
            return date.fromisoformat(s)
        return as_date(datetime.fromisoformat(s))
    raise ValueError(f"invalid date: {value!r}")


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Inclusive start and exclusive end of a UTC calendar day."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def last_day_of_month(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def add_months(year: int, month: int, months: int) -> tuple[int, int]:
    """Shift a (year, month) pair by a number of months."""
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def to_iso_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d is not None else None
