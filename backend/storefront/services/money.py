"""
Money utilities.

Amounts are integers in the currency's smallest unit. Stored or client-supplied
money fields may be missing or malformed, so every read goes through
to_amount() before it reaches a calculation.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

# thousands separator, decimal separator, symbol, symbol goes first, decimals shown
LOCALE_FORMATS = {
    "vi_VN": (".", ",", "₫", False),
    "en_US": (",", ".", "$", True),
    "en_GB": (",", ".", "£", True),
    "de_DE": (".", ",", "€", False),
    "fr_FR": (" ", ",", "€", False),
}

ZERO_DECIMAL_CURRENCIES = {"VND", "JPY", "KRW"}

CURRENCY_SYMBOLS = {"VND": "₫", "USD": "$", "EUR": "€", "GBP": "£", "JPY": "¥", "KRW": "₩"}


def round_amount(value) -> int:
    """Round half-up to a whole amount."""
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def to_amount(value, fallback: int = 0) -> int:
    """
    Coerce value to a finite, non-negative integer amount.

    Returns fallback for None, booleans, non-numeric input, NaN, infinities
    and negative numbers.
    """
    if value is None or isinstance(value, bool):
        return fallback

    if isinstance(value, int):
        return value if value >= 0 else fallback

    if isinstance(value, str):
        value = value.strip()
        if not value:
            return fallback

    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return fallback

    if not number.is_finite() or number < 0:
        return fallback

    return round_amount(number)


def format_amount(amount, locale: str = "vi_VN", currency: str = "VND") -> str:
    """
    Presentation-only rendering of an amount, e.g. "150.000 ₫" or "$1,500.00".

    The result has no business meaning: never parse it back or feed it into
    a calculation.
    """
    thousands, decimal_sep, _, symbol_first = LOCALE_FORMATS.get(locale, LOCALE_FORMATS["en_US"])
    symbol = CURRENCY_SYMBOLS.get(currency, currency)

    number = Decimal(to_amount(amount))
    if currency in ZERO_DECIMAL_CURRENCIES:
        text = f"{int(number):,}"
    else:
        # minor units -> major units
        text = f"{number / 100:,.2f}"

    text = text.replace(",", "\0").replace(".", decimal_sep).replace("\0", thousands)

    if symbol_first:
        return f"{symbol}{text}"
    return f"{text} {symbol}"
