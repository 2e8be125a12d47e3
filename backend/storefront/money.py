"""
Fixed-point money helpers.

Amounts are stored and summed as integer cents. Decimal is used only at the
edges: parsing caller input and rendering amounts for display. Binary floats
are rejected outright.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .errors import ValidationError

# Maximum price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

_CENT = Decimal("0.01")


def to_cents(amount: Any, field: str = "amount") -> int:
    """
    Convert a currency amount (Decimal, decimal string, or whole int units)
    into integer cents, rounding half-up to the cent.
    """
    if amount is None or isinstance(amount, bool):
        raise ValidationError(f"{field} is required")
    if isinstance(amount, float):
        raise ValidationError(f"{field} must be a decimal string or Decimal, not a float")
    try:
        value = Decimal(str(amount).strip().replace(",", ""))
    except InvalidOperation:
        raise ValidationError(f"{field} must be a decimal amount")
    if not value.is_finite():
        raise ValidationError(f"{field} must be a decimal amount")
    cents = int((value.quantize(_CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())
    return check_cents(cents, field)


def check_cents(cents: Any, field: str = "amount_cents") -> int:
    if isinstance(cents, bool) or not isinstance(cents, int):
        raise ValidationError(f"{field} must be an integer number of cents")
    if cents < 0:
        raise ValidationError(f"{field} cannot be negative")
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} exceeds maximum of {MAX_PRICE_CENTS}")
    return cents


def cents_to_decimal(cents: int | None) -> Decimal | None:
    if cents is None:
        return None
    return Decimal(cents).scaleb(-2)


def format_cents(cents: int | None) -> str | None:
    value = cents_to_decimal(cents)
    return None if value is None else str(value)


def apply_discount(cents: int, percent: int | None) -> int:
    """Apply a whole-number percentage discount, half-up to the cent."""
    if not percent:
        return cents
    discounted = Decimal(cents) * (100 - percent) / 100
    return int(discounted.quantize(Decimal(1), rounding=ROUND_HALF_UP))
