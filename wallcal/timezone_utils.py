"""
Timezone utilities for wallcal.

Provides the conversions between "floating" wall-clock times anchored to a
named zone and absolute UTC instants. Recurrence rules are evaluated in
wall-clock space, so the expander converts its window into the floating
frame and every produced occurrence back again.

All event times leave this package as UTC.
"""

from datetime import datetime, date, time, timedelta
from typing import Optional, Union
import pytz


def get_timezone(zone_name: Optional[str]):
    """
    Get a pytz timezone object for a zone name.

    Returns:
        pytz timezone, or None if the name is empty or unknown.
    """
    if not zone_name:
        return None
    try:
        return pytz.timezone(zone_name)
    except pytz.UnknownTimeZoneError:
        return None


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(pytz.UTC)


def ensure_utc(dt: Union[datetime, date]) -> datetime:
    """
    Convert a datetime (or date) to an aware UTC datetime.

    Naive datetimes are taken to already be UTC wall-clock; dates become
    midnight UTC.
    """
    if not isinstance(dt, datetime):
        return datetime.combine(dt, time.min, tzinfo=pytz.UTC)
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def format_utc_iso(dt: Union[datetime, date]) -> str:
    """Format as ISO-8601 UTC with millisecond precision, e.g. 2024-01-01T10:00:00.000Z."""
    value = ensure_utc(dt)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string into an aware UTC datetime.

    Accepts a trailing 'Z'. Date-only strings map to midnight UTC.

    Returns:
        The parsed datetime, or None for empty or invalid input.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return ensure_utc(parsed)


def get_timezone_offset(instant: datetime, zone_name: Optional[str]) -> timedelta:
    """
    Get a zone's UTC offset at a specific instant.

    The instant is rendered into zone-local wall-clock fields, and those
    fields are read back as if they were UTC; the difference is the offset
    in effect at that instant, so DST transitions come out right.

    Args:
        instant: The instant (naive values are read as UTC)
        zone_name: IANA zone name

    Returns:
        The offset, or zero if the zone cannot be resolved.
    """
    tz = get_timezone(zone_name)
    if tz is None:
        return timedelta(0)
    utc_instant = ensure_utc(instant)
    local_fields = utc_instant.astimezone(tz).replace(tzinfo=None)
    return local_fields - utc_instant.replace(tzinfo=None)


def to_floating(instant: datetime, zone_name: Optional[str]) -> datetime:
    """
    Convert an absolute instant to zone-local wall-clock time.

    Args:
        instant: Absolute instant (naive values are read as UTC)
        zone_name: IANA zone name

    Returns:
        A naive datetime carrying the zone's wall-clock fields.
        Unknown zones leave the UTC fields unchanged.
    """
    utc_instant = ensure_utc(instant)
    tz = get_timezone(zone_name)
    if tz is None:
        return utc_instant.replace(tzinfo=None)
    return utc_instant.astimezone(tz).replace(tzinfo=None)


def to_absolute(floating: datetime, zone_name: Optional[str]) -> datetime:
    """
    Convert a zone-local wall-clock time to an absolute UTC instant.

    The wall-clock fields are first read as UTC; the zone offset at that
    guessed instant is then subtracted.

    Args:
        floating: Wall-clock datetime (any tzinfo is ignored)
        zone_name: IANA zone name

    Returns:
        Aware UTC datetime.
    """
    guess = pytz.UTC.localize(floating.replace(tzinfo=None))
    return guess - get_timezone_offset(guess, zone_name)
