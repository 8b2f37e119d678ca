"""Shared utility functions.

parse_date:        returns None on bad input
parse_date_input:  raises ValueError on bad input (request bodies)
parse_decimal:     raises ValueError on bad or non-finite input
quantize_2:        2-place money/hours rounding (ROUND_HALF_UP)
as_utc:            naive datetimes from SQLite read back as UTC
"""
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

TWO_PLACES = Decimal("0.01")


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Same as parse_date() but raises instead of returning None, so
    blueprints can answer 400 with a precise message.
    """
    if value is None or value == "":
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValueError("Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY.")
    return parsed


def parse_decimal(value, field: str = "value"):
    """Coerce a JSON number/string to Decimal. None passes through."""
    if value is None or value == "":
        return None
    if isinstance(value, float):
        value = str(value)
    try:
        parsed = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError(f"{field} must be a number") from exc
    if not parsed.is_finite():
        raise ValueError(f"{field} must be a finite number")
    return parsed


def quantize_2(value) -> Decimal | None:
    """Round to 2 decimal places, half-up. None passes through."""
    if value is None:
        return None
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on round-trip; treat naive datetimes as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
