"""Utility functions."""

from app.utils.date_helpers import (
    day_bounds,
    format_display_date,
    provider_date_for_epoch,
    reference_now,
    to_provider_date,
)
from app.utils.match_status import MatchStatus, coerce_status, minute_text

__all__ = [
    "day_bounds",
    "format_display_date",
    "provider_date_for_epoch",
    "reference_now",
    "to_provider_date",
    "MatchStatus",
    "coerce_status",
    "minute_text",
]
