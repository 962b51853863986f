"""
Timezone utilities.

All instants handled by the authorization engine are UTC and
timezone-aware. Naive datetimes coming from clients or from SQLite are
interpreted as UTC.
"""

from datetime import datetime, timezone

UTC = timezone.utc


def utc_now() -> datetime:
    """
    Current time in UTC (timezone-aware).

    This is the default clock injected into the resolver and the
    stores; tests pass a fake clock instead.
    """
    return datetime.now(UTC)


def to_utc(dt: datetime) -> datetime:
    """Convert to aware UTC; naive values are taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)
