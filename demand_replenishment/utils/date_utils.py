# demand_replenishment/utils/date_utils.py
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def convert_to_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    """Convert various date representations to a date object.

    Args:
        value: ISO string, date or datetime

    Returns:
        Date object or None
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value.date()

    if isinstance(value, date):
        return value

    if isinstance(value, str):
        return date.fromisoformat(value.strip()[:10])

    raise ValueError(f"Cannot convert {value!r} to date")


def day_range(start: date, days: int):
    """Yield ``days`` consecutive dates beginning at ``start``."""
    for offset in range(days):
        yield start + timedelta(days=offset)


def is_within_hours(moment: datetime, now: datetime, hours: int) -> bool:
    """Check whether ``moment`` lies within the last ``hours`` before ``now``."""
    return moment >= now - timedelta(hours=hours)


def parse_time_of_day(value: str) -> time:
    """Parse an ``HH:MM`` string into a time object."""
    hours, minutes = value.strip().split(':')
    return time(int(hours), int(minutes))


def next_daily_fire_time(now: datetime, fire_at: time) -> datetime:
    """Get the next occurrence of ``fire_at`` strictly after ``now``.

    Args:
        now: Reference time
        fire_at: Time of day at which the trigger fires

    Returns:
        Next fire datetime
    """
    candidate = datetime.combine(now.date(), fire_at)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def get_season(month: int) -> str:
    """Map a calendar month to the retail season used by the heuristics."""
    if month in (1, 2, 12):
        return 'winter'
    if month in (3, 4, 5):
        return 'summer'
    if month in (6, 7, 8, 9):
        return 'monsoon'
    return 'post_monsoon'
