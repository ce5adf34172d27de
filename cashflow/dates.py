from __future__ import annotations

from calendar import monthrange
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

DEFAULT_REFERENCE_ZONE = "UTC"
SATURDAY = 5
SUNDAY = 6


def to_calendar_date(
    value: date | datetime | str, zone: str = DEFAULT_REFERENCE_ZONE
) -> date:
    """Strip a boundary value down to a calendar date in the reference zone.

    Aware datetimes are converted to ``zone`` first; naive datetimes are taken
    as already being local to it. Strings accept ``YYYY-MM-DD`` or any ISO
    8601 timestamp.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(ZoneInfo(zone))
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        raw = value.strip()
        try:
            return datetime.strptime(raw, "%Y-%m-%d").date()
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValueError("Date must be in YYYY-MM-DD or ISO 8601 format.") from exc
        return to_calendar_date(parsed, zone)
    raise TypeError(f"Cannot convert {type(value).__name__} to a calendar date.")


def add_months(start_date: date, months: int, anchor_day: int) -> date:
    total_month = start_date.month - 1 + months
    year = start_date.year + total_month // 12
    month = total_month % 12 + 1
    last_day = monthrange(year, month)[1]
    day = min(anchor_day, last_day)
    return date(year, month, day)


def clamp_day(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, monthrange(year, month)[1]))


def months_between(start_value: date, end_value: date) -> int:
    return (end_value.year - start_value.year) * 12 + (end_value.month - start_value.month)


def month_start(value: date) -> date:
    return value.replace(day=1)


def shift_month(value: date, months: int) -> date:
    month_index = (value.year * 12 + value.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1)


def shift_month_keep_day(value: date, months: int) -> date:
    return add_months(value, months, value.day)


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def parse_month_value(value: str) -> str:
    """Normalize ``YYYY-MM`` (or a full ``YYYY-MM-DD``) to ``YYYY-MM``."""
    try:
        parsed = datetime.strptime(value.strip(), "%Y-%m").date()
    except ValueError:
        try:
            parsed = datetime.strptime(value.strip(), "%Y-%m-%d").date()
        except ValueError as exc:
            raise ValueError("Invalid month format. Use YYYY-MM.") from exc
    return month_key(parsed)


def previous_business_day(value: date) -> date:
    if value.weekday() == SATURDAY:
        return value - timedelta(days=1)
    if value.weekday() == SUNDAY:
        return value - timedelta(days=2)
    return value


def iter_month_keys(start_value: date, end_value: date) -> list[str]:
    keys: list[str] = []
    cursor = month_start(start_value)
    end_month = month_start(end_value)
    while cursor <= end_month:
        keys.append(month_key(cursor))
        cursor = shift_month(cursor, 1)
    return keys
