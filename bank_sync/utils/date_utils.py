"""Date manipulation utilities"""

from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)"""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def shift_years(value: datetime, years: int) -> datetime:
    """Same calendar day `years` away; Feb 29 falls back to Feb 28"""
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        return value.replace(year=value.year + years, day=28)


def trailing_window_start(now: datetime, days: int) -> datetime:
    return now - timedelta(days=days)


def parse_value_date(raw: str) -> date:
    """Parse a YYYY-MM-DD value date, tolerating a trailing time component"""
    return date.fromisoformat(raw[:10])
