from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" and "YYYY-MM-DDTHH:MM" (naive) are interpreted as UTC
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

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def day_bounds(value: date | datetime) -> tuple[datetime, datetime]:
    """Inclusive start and exclusive end of the UTC day containing value."""
    day = value.date() if isinstance(value, datetime) else value
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def parse_date_range(
    start: Optional[str], end: Optional[str]
) -> tuple[Optional[datetime], Optional[datetime]]:
    """
    Parse a user-supplied date range into [start, end) UTC-naive bounds.

    Both ends are expanded to whole UTC days: the start to 00:00 of its day,
    the end to 00:00 of the following day, so an end date is inclusive.
    """
    start_dt = parse_iso_datetime(start) if start else None
    end_dt = parse_iso_datetime(end) if end else None
    if start_dt is not None:
        start_dt = day_bounds(start_dt)[0]
    if end_dt is not None:
        end_dt = day_bounds(end_dt)[1]
    return start_dt, end_dt


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
