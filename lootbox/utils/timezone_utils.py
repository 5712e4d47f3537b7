"""Centralized Timezone Utilities - All datetime operations should use these functions."""

from datetime import datetime, timedelta, timezone

UTC = timezone.utc


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(dt: datetime) -> datetime:
    """Treat naive datetimes (as returned by MongoDB) as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def seconds_until(dt: datetime) -> float:
    """Seconds from now until dt, never negative."""
    return max(0.0, (as_utc(dt) - utc_now()).total_seconds())


def utc_after(seconds: float) -> datetime:
    """UTC datetime the given number of seconds from now."""
    return utc_now() + timedelta(seconds=seconds)
