"""
Time utilities for the PostCare scheduling system

Provides timezone-aware datetime handling for consistent scheduling between
clinic-local input and the UTC instants stored in Redis.
"""
from datetime import datetime, time, timezone
from typing import Optional
import logging

import pytz

logger = logging.getLogger("time-utils")

# Default timezone for the system (UTC)
SYSTEM_TIMEZONE = timezone.utc


def now_utc() -> datetime:
    """
    Get current time in UTC

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(SYSTEM_TIMEZONE)


def get_timezone(name: str):
    """Look up a pytz timezone, falling back to UTC for unknown names"""
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone '{name}', assuming UTC")
        return pytz.utc


def parse_iso_to_utc(iso_string: str, assume_timezone: str = 'UTC') -> datetime:
    """
    Parse ISO datetime string to UTC datetime

    Args:
        iso_string: ISO format datetime string ("Z" suffix accepted)
        assume_timezone: Timezone for naive strings

    Returns:
        datetime object in UTC timezone

    Raises:
        ValueError: If the ISO string is invalid
    """
    value = (iso_string or "").strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(value)
    except ValueError as e:
        logger.debug(f"Failed to parse ISO datetime string '{iso_string}': {e}")
        raise

    return to_utc(dt, assume_timezone)


def to_utc(dt: datetime, assume_timezone: str = 'UTC') -> datetime:
    """
    Convert datetime to UTC

    Args:
        dt: Datetime to convert
        assume_timezone: Timezone to assume if datetime is naive

    Returns:
        datetime object in UTC timezone
    """
    if dt.tzinfo is None:
        dt = get_timezone(assume_timezone).localize(dt)

    return dt.astimezone(SYSTEM_TIMEZONE)


def to_local(dt: datetime, local_timezone: str = 'UTC') -> datetime:
    """Convert a UTC (or naive, assumed UTC) datetime to a local timezone"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=SYSTEM_TIMEZONE)
    return dt.astimezone(get_timezone(local_timezone))


def truncate_to_minute(dt: datetime) -> datetime:
    """Drop seconds and microseconds"""
    return dt.replace(second=0, microsecond=0)


def parse_clock(value: str) -> time:
    """Parse an "HH:MM" clock string"""
    hours, minutes = value.strip().split(":", 1)
    return time(hour=int(hours), minute=int(minutes))


def format_schedule_label(dt: datetime, local_timezone: str = 'UTC', now: Optional[datetime] = None) -> str:
    """
    Human-readable label for a scheduled instant, e.g. "Today 6:35 PM"

    Args:
        dt: UTC datetime
        local_timezone: Timezone the label is shown in
        now: Reference time (defaults to the current time)
    """
    local_dt = to_local(dt, local_timezone)
    local_now = to_local(now or now_utc(), local_timezone)
    clock = local_dt.strftime("%I:%M %p").lstrip("0")

    day_delta = (local_dt.date() - local_now.date()).days
    if day_delta == 0:
        return f"Today {clock}"
    if day_delta == 1:
        return f"Tomorrow {clock}"
    return f"{local_dt.strftime('%a %d %b %Y')} {clock}"


def isoformat_or_empty(dt: Optional[datetime]) -> str:
    """Serialize an optional datetime for Redis hashes"""
    return dt.isoformat() if dt else ""


def datetime_or_none(value: Optional[str]) -> Optional[datetime]:
    """Deserialize an optional datetime stored in a Redis hash"""
    if not value:
        return None
    return datetime.fromisoformat(value)
