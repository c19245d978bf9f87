"""Timezone helpers.

Postgres hands back aware datetimes while SQLite hands back naive ones, so
every datetime crossing the domain boundary is normalised to aware UTC.
"""

from datetime import datetime, timezone
from typing import Annotated, Optional

from pydantic import AfterValidator


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_timestamp(ts: Optional[int]) -> Optional[datetime]:
    """Convert a unix timestamp (seconds) from the payment processor."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]
