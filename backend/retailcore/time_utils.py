from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Aware datetimes are converted to UTC; naive ones are assumed to be UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string into a UTC-naive datetime.

    - None / "" -> None
    - trailing "Z" and "+HH:MM" offsets are honoured
    - naive input is interpreted as UTC
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(s))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize as ISO-8601 with a trailing 'Z' (naive values are treated as UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def hours_before(now: datetime, hours: float) -> datetime:
    return now - timedelta(hours=hours)


def minutes_before(now: datetime, minutes: float) -> datetime:
    return now - timedelta(minutes=minutes)


def days_before(now: datetime, days: float) -> datetime:
    return now - timedelta(days=days)


def hours_between(start: datetime, end: datetime) -> float:
    """Elapsed hours rounded to two decimals (never negative)."""
    seconds = max((end - start).total_seconds(), 0)
    return round(seconds / 3600, 2)
