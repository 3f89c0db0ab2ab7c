from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" is midnight UTC of that day
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    if dt.tzinfo is None:
        return dt

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """Parse "YYYY-MM-DD" (extra time component ignored)."""
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    return date.fromisoformat(s[:10])


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """[start, end) of a UTC day as naive datetimes."""
    start = datetime.combine(day, time.min)
    end = datetime.combine(day.fromordinal(day.toordinal() + 1), time.min)
    return start, end


def day_epoch(day: date) -> int:
    """Unix seconds of UTC midnight for the given day."""
    return int(datetime.combine(day, time.min, tzinfo=timezone.utc).timestamp())


_EPOCH_ORDINAL = date(1970, 1, 1).toordinal()
SECONDS_PER_DAY = 86400


def date_from_epoch(seconds: int) -> date:
    """
    Inverse of day_epoch.

    Raises ValueError when seconds is not a UTC midnight and ValueError or
    OverflowError when the day falls outside the supported date range.
    """
    days, remainder = divmod(seconds, SECONDS_PER_DAY)
    if remainder:
        raise ValueError(f"{seconds} is not a UTC midnight")
    return date.fromordinal(_EPOCH_ORDINAL + days)


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
    if d is None:
        return None
    if isinstance(d, datetime):
        d = d.date()
    return d.isoformat()
