"""
Reference-day (TSI, UTC+3) date helpers.

The provider bulletin is scoped to calendar days in a fixed UTC+3 offset.
All day boundaries are computed here, never from the process's local
timezone.
"""

from datetime import date, datetime, time, timedelta, timezone

from app.config import get_settings

settings = get_settings()

WINDOW_LABELS = ("YESTERDAY", "TODAY", "TOMORROW")


def reference_tz(offset_hours: int | None = None) -> timezone:
    """Fixed-offset timezone for the reference day."""
    if offset_hours is None:
        offset_hours = settings.reference_utc_offset_hours
    return timezone(timedelta(hours=offset_hours))


def reference_now(now: datetime | None = None, offset_hours: int | None = None) -> datetime:
    """Current (or given) instant expressed in the reference offset."""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(reference_tz(offset_hours))


def reference_today(now: datetime | None = None, offset_hours: int | None = None) -> date:
    return reference_now(now, offset_hours).date()


def to_provider_date(value: date | str) -> str:
    """
    Convert a date to the provider's 8-digit format.

    Accepts a ``date``, ``YYYYMMDD`` or ``YYYY-MM-DD``.

    Raises:
        ValueError: If the string is not a valid calendar date
    """
    if isinstance(value, date):
        return value.strftime("%Y%m%d")
    cleaned = value.strip().replace("-", "")
    if len(cleaned) != 8 or not cleaned.isdigit():
        raise ValueError(f"Invalid date: {value!r}")
    # Rejects impossible calendar dates such as 20250231
    datetime.strptime(cleaned, "%Y%m%d")
    return cleaned


def parse_provider_date(value: str) -> date:
    return datetime.strptime(to_provider_date(value), "%Y%m%d").date()


def format_display_date(value: date | str) -> str:
    """``20251224`` -> ``2025-12-24``."""
    if isinstance(value, str):
        value = parse_provider_date(value)
    return value.isoformat()


def window_dates(
    now: datetime | None = None, offset_hours: int | None = None
) -> list[tuple[str, str]]:
    """
    Yesterday/today/tomorrow in the reference day.

    Returns:
        List of (provider_date, label) tuples in chronological order
    """
    today = reference_today(now, offset_hours)
    return [
        (to_provider_date(today + timedelta(days=delta)), label)
        for delta, label in zip((-1, 0, 1), WINDOW_LABELS)
    ]


def day_bounds(value: date | str, offset_hours: int | None = None) -> tuple[int, int]:
    """
    Epoch-second range [00:00:00, 23:59:59] of a reference-local day.

    Example:
        20251224 at UTC+3 -> 2025-12-23 21:00:00 UTC .. 2025-12-24 20:59:59 UTC
    """
    day = parse_provider_date(value) if isinstance(value, str) else value
    tz = reference_tz(offset_hours)
    start = datetime.combine(day, time(0, 0, 0), tzinfo=tz)
    end = datetime.combine(day, time(23, 59, 59), tzinfo=tz)
    return int(start.timestamp()), int(end.timestamp())


def provider_date_for_epoch(epoch: int, offset_hours: int | None = None) -> str:
    """Reference-local bulletin date containing the given kickoff."""
    instant = datetime.fromtimestamp(epoch, tz=timezone.utc)
    return to_provider_date(reference_today(instant, offset_hours))


def is_in_repair_window(
    now: datetime | None = None,
    start_minute: int | None = None,
    end_hour: int | None = None,
    offset_hours: int | None = None,
) -> bool:
    """True between 00:10 and 06:59 reference-local time (inclusive)."""
    if start_minute is None:
        start_minute = settings.repair_window_start_minute
    if end_hour is None:
        end_hour = settings.repair_window_end_hour

    local = reference_now(now, offset_hours)
    if local.hour > end_hour:
        return False
    if local.hour == 0 and local.minute < start_minute:
        return False
    return True
