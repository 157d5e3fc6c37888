"""
date_time_helper.py

Helpers for conversion and formatting of date and time values.
Everything is stored as timezone-aware UTC; display conversion uses a
configurable IANA zone.

All features and modules should use ONLY these helpers for date/time logic.
"""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def _zone(tz_name: str):
    # UTC needs no tz database
    if not tz_name or tz_name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(tz_name)


def utc_now() -> datetime:
    """Current UTC time, truncated to milliseconds."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def utc_now_iso() -> str:
    """
    Returns the current UTC time as an ISO8601 string.
    Used for logging and DB storage.
    """
    return to_iso(utc_now())


def ensure_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """
    Serialize a datetime as UTC ISO8601 with millisecond precision
    ("2024-01-31T12:00:00.000+00:00"). ``None`` passes through.
    """
    if dt is None:
        return None
    return ensure_utc(dt).isoformat(timespec="milliseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def utc_to_local_str(utc_iso: str, tz_name: str = "UTC") -> str:
    """
    Formats a UTC ISO8601 timestamp as a human-readable string for display.

    :param utc_iso: UTC time as ISO string (from DB/logs)
    :param tz_name: IANA zone used for display
    :return: String in format "YYYY-MM-DD HH:MM:SS TZ"
    """
    dt_local = from_iso(utc_iso).astimezone(_zone(tz_name))
    return dt_local.strftime("%Y-%m-%d %H:%M:%S %Z")


def format_display(dt: Optional[datetime], tz_name: str = "UTC") -> str:
    if dt is None:
        return "-"
    return utc_to_local_str(to_iso(dt), tz_name)


def format_date(dt: datetime, tz_name: str = "UTC") -> str:
    """Calendar date (YYYY-MM-DD) of ``dt`` in the display zone."""
    return ensure_utc(dt).astimezone(_zone(tz_name)).strftime("%Y-%m-%d")
