"""Timezone-aware timestamp utilities."""

import time
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime.

    Use instead of deprecated ``datetime.utcnow()`` which returns naive datetimes.
    """
    return datetime.now(timezone.utc)


def now_epoch() -> int:
    """Return current time as integer epoch seconds (provider time unit)."""
    return int(time.time())
