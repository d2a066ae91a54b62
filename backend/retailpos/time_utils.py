from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str], *, end_of_day: bool = False) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" (date only) -> midnight, or 23:59:59.999999 with end_of_day
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return _normalize(value)
    if isinstance(value, date):
        return datetime.combine(value, time.max if end_of_day else time.min)

    s = str(value).strip()
    if not s:
        return None

    if len(s) == 10:
        d = date.fromisoformat(s)
        return datetime.combine(d, time.max if end_of_day else time.min)

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    return _normalize(datetime.fromisoformat(s))


def _normalize(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_hhmm(value: Optional[str]) -> Optional[time]:
    """Parse "HH:MM" into a time. Returns None for empty input."""
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    hours, _, minutes = s.partition(":")
    if not hours.isdigit() or not minutes.isdigit() or len(minutes) != 2:
        raise ValueError(f"invalid HH:MM time: {value!r}")
    h, m = int(hours), int(minutes)
    if h > 23 or m > 59:
        raise ValueError(f"invalid HH:MM time: {value!r}")
    return time(h, m)


def to_business_time(dt: datetime, tz_name: str) -> datetime:
    """Convert a UTC-naive datetime to naive wall-clock time in tz_name."""
    if tz_name in ("UTC", "Etc/UTC"):
        return dt
    aware = dt.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name))
    return aware.replace(tzinfo=None)


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
