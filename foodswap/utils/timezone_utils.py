"""Centralized Timezone Utilities - All datetime operations should use these functions."""

from datetime import datetime, timedelta, timezone

UTC = timezone.utc


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def hours_from(dt: datetime, hours: int) -> datetime:
    """Return ``dt`` shifted forward by ``hours``."""
    return dt + timedelta(hours=hours)
