"""
Money Utilities - Safe Decimal operations for cart prices.

Avoids float precision issues by using Decimal throughout.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union

MONEY_PRECISION = Decimal("0.01")

Number = Union[str, int, float, Decimal, None]


def to_decimal(value: Number) -> Decimal:
    """
    Convert any value to Decimal safely.

    Args:
        value: Value to convert (str, int, float, Decimal, or None)

    Returns:
        Decimal representation of the value, or Decimal("0") if None/invalid
    """
    if value is None or isinstance(value, bool):
        return Decimal("0")

    if isinstance(value, Decimal):
        return value

    try:
        # Go through str so 0.1 stays 0.1
        if isinstance(value, float):
            return Decimal(str(value))
        return Decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0")


def is_positive_amount(value: Number) -> bool:
    """Check that a value parses to a finite amount greater than zero."""
    amount = to_decimal(value)
    return amount.is_finite() and amount > 0


def round_money(value: Number) -> Decimal:
    """Round a monetary value to cents."""
    return to_decimal(value).quantize(MONEY_PRECISION, rounding=ROUND_HALF_UP)


def multiply(price: Number, quantity: Union[int, Decimal]) -> Decimal:
    """Line total for ``quantity`` units at ``price``."""
    return to_decimal(price) * to_decimal(quantity)


def to_float(value: Number) -> float:
    """Convert Decimal to float for display or JSON payloads."""
    return float(round_money(value))
