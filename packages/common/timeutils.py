"""
UTC time helpers shared by the decision engine, dedupe hasher and scheduler.

Every timestamp that leaves this module is timezone-aware UTC.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple, Union

TimestampLike = Union[datetime, date, str]


def utcnow() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Optional[TimestampLike]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp, date, or datetime into aware UTC.

    Date-only input maps to midnight UTC. Returns None for empty or
    unparseable input instead of raising.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None

    raw = value.strip()
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    return ensure_utc(parsed)


def start_of_utc_day(value: datetime) -> datetime:
    """Midnight UTC of the day containing value"""
    value = ensure_utc(value)
    return datetime.combine(value.date(), time.min, tzinfo=timezone.utc)


def utc_day_window(now: datetime, offset_days: int = 0) -> Tuple[datetime, datetime]:
    """Half-open [start, end) UTC day window, offset_days after today"""
    start = start_of_utc_day(now) + timedelta(days=offset_days)
    return start, start + timedelta(days=1)
