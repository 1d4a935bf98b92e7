"""DateKey helpers — canonical ``YYYY-MM-DD`` local-calendar keys."""

from __future__ import annotations

import re
from datetime import date, datetime
from zoneinfo import ZoneInfo

from app.config import settings

_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def to_date_key(value: date) -> str:
    if isinstance(value, datetime):
        value = value.date()
    return value.strftime("%Y-%m-%d")


def normalize_date_key(value: object) -> str | None:
    """Coerce a date, datetime or string into a DateKey.

    Strings are cut to their first 10 characters, so ``date`` and
    ``timestamptz`` column values both normalize to the calendar day.
    Returns None for anything that is not a real calendar date.
    """
    if isinstance(value, (date, datetime)):
        return to_date_key(value)
    if not isinstance(value, str) or not value:
        return None
    key = value[:10]
    if not _KEY_RE.match(key):
        return None
    try:
        date.fromisoformat(key)
    except ValueError:
        return None
    return key


def today_key(tz_name: str | None = None) -> str:
    tz = ZoneInfo(tz_name or settings.default_tz)
    return to_date_key(datetime.now(tz))


def month_bounds(year: int, month: int) -> tuple[str, str]:
    """Start key and exclusive end key for a calendar month."""
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return to_date_key(start), to_date_key(end)


def month_day_label(key: str) -> str:
    """Short ``M/D`` label for chart axes. Falls back to the key itself."""
    parts = key.split("-")
    if len(parts) != 3 or not all(p.isdigit() for p in parts[1:]):
        return key
    return f"{int(parts[1])}/{int(parts[2])}"
