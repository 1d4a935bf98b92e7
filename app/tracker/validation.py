"""Local input validation — runs before any store call."""

from __future__ import annotations

import math

from app.tracker.datekeys import normalize_date_key


class ValidationFailure(ValueError):
    """Invalid user input; the submit is rejected and nothing is written."""


def finite_or_none(value: object) -> float | None:
    """Float conversion that degrades non-numeric and non-finite values to None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def require_weight(value: object) -> float:
    weight = finite_or_none(value)
    if weight is None or weight <= 0:
        raise ValidationFailure(f"Weight must be a positive finite number, got {value!r}")
    return weight


def require_optional_weight(value: object) -> float | None:
    """None stays None (goal unset); anything else must be a valid weight."""
    if value is None:
        return None
    return require_weight(value)


def require_date_key(value: object, name: str = "date") -> str:
    key = normalize_date_key(value)
    if key is None:
        raise ValidationFailure(f"Invalid {name}: {value!r}")
    return key


def require_period(start: object, end: object) -> tuple[str, str]:
    start_key = require_date_key(start, "start_date")
    end_key = require_date_key(end, "end_date")
    if start_key > end_key:
        raise ValidationFailure(f"start_date {start_key} is after end_date {end_key}")
    return start_key, end_key


def require_title(value: object) -> str:
    title = value.strip() if isinstance(value, str) else ""
    if not title:
        raise ValidationFailure("Title must not be empty")
    return title


def require_amount(value: object, name: str = "points") -> int:
    """Non-negative whole amount for quest points / reward cost."""
    number = finite_or_none(value)
    if number is None:
        raise ValidationFailure(f"{name} must be a finite number, got {value!r}")
    return max(0, int(number))
