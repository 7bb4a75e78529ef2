"""Instant parsing and ISO-8601 formatting helpers."""

from datetime import datetime, timezone

from dateutil import parser as date_parser


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_instant(value) -> datetime | None:
    """
    Parse an ISO-8601 string (or datetime) into an aware UTC datetime.

    Returns None for anything that is not a valid instant.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return ensure_utc(date_parser.isoparse(value.strip()))
    except (ValueError, OverflowError):
        return None


def to_iso_instant(value: datetime) -> str:
    """Format as `YYYY-MM-DDTHH:MM:SS.mmmZ`."""
    value = ensure_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
