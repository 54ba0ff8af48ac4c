from __future__ import annotations
from datetime import datetime

from .errors import ValidationError
from .time_utils import parse_iso_datetime, to_naive_utc


# 999,999,999,999 in the smallest currency unit; guards against overflow and nonsense input
MAX_AMOUNT = 999_999_999_999


def coerce_int(field: str, value, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """
    Strict integer parsing for client input.

    Rejects floats, booleans, scientific notation and decimal strings rather
    than silently truncating them.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        number = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            number = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    upper = MAX_AMOUNT if maximum is None else maximum
    if number > upper:
        raise ValidationError(f"{field} must be at most {upper}")
    return number


def coerce_optional_int(field: str, value, *, minimum: int | None = None, maximum: int | None = None) -> int | None:
    if value is None or value == "":
        return None
    return coerce_int(field, value, minimum=minimum, maximum=maximum)


def coerce_datetime(field: str, value) -> datetime:
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        if dt is None:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{field} must be a datetime")


def coerce_bool(field: str, value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "1", "yes"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "0", "no"):
        return False
    raise ValidationError(f"{field} must be a boolean")


def require_text(field: str, value, *, max_length: int = 255) -> str:
    """Non-empty, stripped string."""
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text


def optional_text(field: str, value, *, max_length: int = 255) -> str | None:
    if value is None or not str(value).strip():
        return None
    return require_text(field, value, max_length=max_length)
