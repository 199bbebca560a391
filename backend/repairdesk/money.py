# Overview: Fixed-point currency helpers (2 decimal places, round-half-up).

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .errors import ValidationError

CENT = Decimal("0.01")

# Maximum amount: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999


def to_decimal(value: Any, *, field: str = "amount") -> Decimal:
    """
    Parse a currency amount and quantize it to cents (half-up).

    Accepts Decimal, int, float (via its string form) and numeric strings.
    Booleans, blanks and non-finite values are rejected.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        stripped = value.strip().replace(",", ".")
        if not stripped:
            raise ValidationError(f"{field} is required")
        try:
            amount = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a decimal amount")
    else:
        raise ValidationError(f"{field} must be a decimal amount")

    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite amount")

    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Any, *, field: str = "amount", allow_negative: bool = False) -> int:
    amount = to_decimal(value, field=field)
    if amount < 0 and not allow_negative:
        raise ValidationError(f"{field} cannot be negative")
    cents = int(amount * 100)
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds the maximum amount")
    return cents


def optional_cents(value: Any, *, field: str = "amount") -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return to_cents(value, field=field)


def cents_to_decimal(cents: int | None) -> Decimal | None:
    if cents is None:
        return None
    return (Decimal(cents) / 100).quantize(CENT)


def format_money(cents: int | None) -> str | None:
    """JSON form of a stored amount: "12.50" or None."""
    value = cents_to_decimal(cents)
    return None if value is None else str(value)
