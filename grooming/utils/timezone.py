"""Timezone helpers for converting between UTC and the business's local zone."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_business_zone(value: datetime, zone_name: str) -> datetime:
    """Convert to the business zone. Naive datetimes are assumed to be UTC."""
    return ensure_utc(value).astimezone(ZoneInfo(zone_name))


def localize(value: datetime, zone_name: str) -> datetime:
    """Attach ``zone_name`` to a naive wall-clock datetime; aware values pass through."""
    if value.tzinfo is not None:
        return value
    return value.replace(tzinfo=ZoneInfo(zone_name))
