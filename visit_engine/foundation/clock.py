"""Timezone-aware clock utilities.

All timestamps in visit-engine are UTC-aware.  Naive values coming from a
store are assumed to already be UTC.
"""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to a naive datetime; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def report_zone(tz_name: str) -> ZoneInfo:
    """Resolve an IANA zone name for report rendering.

    Raises:
        ValueError: If the zone is unknown on this system.
    """
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"unknown report timezone: {tz_name!r}") from exc
