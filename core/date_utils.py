"""
Date and time helpers for the track pipeline.

Points carry unix-second timestamps while tracks and sessions carry
timezone-aware datetimes; everything here converts between the two and keeps
every value in UTC.
"""

import logging
from datetime import UTC, date, datetime, time, timedelta

from dateutil import parser

logger = logging.getLogger(__name__)


def get_current_utc_time() -> datetime:
    """Return the current time as a timezone-aware datetime object in UTC."""
    return datetime.now(UTC)


def parse_timestamp(ts: str | datetime | int | float | None) -> datetime | None:
    """
    Parse a timestamp (ISO string, datetime or unix seconds) into a UTC datetime.

    Returns:
        A timezone-aware datetime object, or None if parsing fails.
    """
    if ts is None or ts == "":
        logger.debug("Received empty timestamp; returning None.")
        return None

    if isinstance(ts, datetime):
        return ensure_utc(ts)

    if isinstance(ts, (int, float)):
        return from_unix(ts)

    try:
        parsed_time = parser.isoparse(ts)
    except (ValueError, TypeError) as e:
        logger.warning("Failed to parse timestamp '%s': %s", ts, e)
        return None
    return ensure_utc(parsed_time)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Return the datetime as an explicit UTC-aware value."""

    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)

    return dt.astimezone(UTC)


def to_unix(dt: datetime) -> int:
    """Whole unix seconds for ``dt`` (naive values are taken as UTC)."""
    return int(ensure_utc(dt).timestamp())


def from_unix(ts: int | float) -> datetime:
    return datetime.fromtimestamp(int(ts), UTC)


def parse_day(value: str | date | datetime | None) -> date:
    """Normalize a day argument, defaulting to today in UTC."""
    if value is None:
        return get_current_utc_time().date()
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    if isinstance(value, date):
        return value
    return datetime.strptime(value, "%Y-%m-%d").date()


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Return the first and last second of ``day`` as UTC datetimes."""
    start = datetime.combine(day, time.min, tzinfo=UTC)
    end = start + timedelta(days=1) - timedelta(seconds=1)
    return start, end


def humanize_duration(seconds: int | float) -> str:
    """Render a duration such as ``1 day 6 hours`` for log and session metadata."""
    seconds = int(seconds)
    if seconds <= 0:
        return "0 seconds"

    parts = []
    for label, size in (("day", 86400), ("hour", 3600), ("minute", 60), ("second", 1)):
        value, seconds = divmod(seconds, size)
        if value:
            parts.append(f"{value} {label}{'s' if value != 1 else ''}")
    return " ".join(parts)
