"""
Timezone helpers. All persisted timestamps are timezone-aware UTC.
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """
    Normalize a datetime to aware UTC.

    SQLite returns naive datetimes for DateTime(timezone=True) columns;
    naive values are taken to be UTC already.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_zone(name: str | None) -> ZoneInfo:
    """Resolve an IANA zone name, falling back to UTC for unknown names."""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def to_local(value: datetime, zone_name: str | None) -> datetime:
    return as_utc(value).astimezone(get_zone(zone_name))
