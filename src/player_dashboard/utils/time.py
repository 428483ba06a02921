"""Time helpers shared across services."""

import time
from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def now_ms() -> int:
    """Return milliseconds since the epoch."""
    return int(time.time() * 1000)


def iso_timestamp(value: datetime) -> str:
    """Format an aware datetime the way browsers print ``Date.toISOString()``."""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
