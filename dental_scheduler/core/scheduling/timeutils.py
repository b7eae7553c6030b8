"""Time conversion and interval predicates shared by availability and booking."""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dental_scheduler.core.scheduling.errors import ValidationError

WEEKDAYS = (
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def resolve_timezone(name: str) -> ZoneInfo:
    """Return the ZoneInfo for an IANA name.

    Raises:
        ValidationError: If the name is not a known timezone
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(
            f"Unknown timezone '{name}'",
            {"timezone": "unknown timezone"},
        ) from e


def parse_date(value: str) -> date:
    """Parse YYYY-MM-DD."""
    return date.fromisoformat(value)


def parse_time(value: str) -> time:
    """Parse HH:MM (24h)."""
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def parse_hhmm_minutes(value: str) -> int:
    """Convert HH:MM into minutes since midnight."""
    parsed = parse_time(value)
    return parsed.hour * 60 + parsed.minute


def format_minutes(minutes: int) -> str:
    """Convert minutes since midnight into HH:MM."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def weekday_name(day: date) -> str:
    """Lowercase English weekday name for a date."""
    return WEEKDAYS[day.weekday()]


def local_to_utc(
    day: date,
    at: time,
    tz: ZoneInfo,
) -> tuple[datetime, datetime]:
    """Attach tz to a wall-clock date and time.

    Returns:
        Tuple of (aware local datetime, aware UTC datetime)
    """
    local = datetime.combine(day, at, tzinfo=tz)
    return local, local.astimezone(timezone.utc)


def compute_interval(
    date_str: str,
    time_str: str,
    tz_name: str,
    duration_minutes: int,
) -> tuple[datetime, datetime, datetime]:
    """Compute the UTC interval of an appointment from local inputs.

    Args:
        date_str: YYYY-MM-DD
        time_str: HH:MM
        tz_name: IANA timezone
        duration_minutes: Appointment length

    Returns:
        Tuple of (naive local scheduled_at, start_utc, end_utc)
    """
    tz = resolve_timezone(tz_name)
    local, start_utc = local_to_utc(parse_date(date_str), parse_time(time_str), tz)
    end_utc = start_utc + timedelta(minutes=duration_minutes)
    return local.replace(tzinfo=None), start_utc, end_utc


def day_bounds_utc(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """UTC bounds of a local calendar day."""
    _, start = local_to_utc(day, time(0, 0), tz)
    _, end = local_to_utc(day + timedelta(days=1), time(0, 0), tz)
    return start, end


def conflicts_with(
    existing_start: datetime,
    existing_end: datetime,
    new_start: datetime,
    new_end: datetime,
) -> bool:
    """Three-clause overlap predicate used by the booking paths.

    True when the existing interval contains the new start, contains the
    new end, or starts inside the new interval.
    """
    return (
        (existing_start <= new_start and existing_end > new_start)
        or (existing_start < new_end and existing_end >= new_end)
        or (existing_start >= new_start and existing_start < new_end)
    )


def intersects(
    slot_start: datetime,
    slot_end: datetime,
    existing_start: datetime,
    existing_end: datetime,
) -> bool:
    """Half-open interval intersection used for availability filtering."""
    return slot_start < existing_end and slot_end > existing_start


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC; convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def naive_utc(value: datetime) -> datetime:
    """Strip tzinfo after converting to UTC, for storage columns."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
