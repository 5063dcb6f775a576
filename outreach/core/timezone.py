"""
Timezone helpers.

Everything the engine stores or compares (delay_until, cooldowns,
connected_at) is timezone-aware UTC.
"""

from datetime import datetime, timezone
from typing import Optional, Union


TZ_UTC = timezone.utc


def utc_now() -> datetime:
    """
    Current datetime in UTC (timezone-aware).

    Returns:
        datetime with tzinfo=UTC
    """
    return datetime.now(TZ_UTC)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Naive datetimes are assumed to already be UTC (database convention).
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=TZ_UTC)
    return dt.astimezone(TZ_UTC)


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO 8601 string (or pass through a datetime) as aware UTC.

    Accepts the trailing "Z" used by Supabase/PostgREST.

    Returns:
        datetime in UTC, or None for empty/invalid input
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    try:
        return to_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None


def iso_utc(dt: Optional[datetime] = None) -> str:
    """
    ISO 8601 UTC representation, convenient for database writes.

    Args:
        dt: datetime to format (default: now)
    """
    if dt is None:
        dt = utc_now()
    return to_utc(dt).isoformat()
