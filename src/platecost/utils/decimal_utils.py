"""Decimal helpers shared by the costing and ledger services.

All quantities and money values are carried as ``Decimal``. Floats are
converted through ``str`` so that ``0.1`` becomes ``Decimal("0.1")`` rather
than its binary approximation.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

MONEY_PLACES = Decimal("0.01")


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Decimal:
    """
    Convert a number-like value to Decimal.

    Args:
        value: int, float, str or Decimal
        default: Returned when value is None (raises if default is also None)

    Returns:
        Decimal representation of value

    Raises:
        ValueError: If value is None without a default, or not numeric
    """
    if value is None:
        if default is None:
            raise ValueError("Cannot convert None to Decimal")
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Cannot convert boolean {value!r} to Decimal")
    try:
        if isinstance(value, float):
            return Decimal(str(value))
        return Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Not a number: {value!r}") from e


def safe_divide(numerator: Decimal, denominator: Decimal) -> Decimal:
    """Divide, returning zero when the denominator is zero."""
    if denominator == ZERO:
        return ZERO
    return numerator / denominator


def percent_fraction(percent: Optional[Any], default: Decimal) -> Decimal:
    """
    Convert a percentage to a fraction, substituting a neutral default.

    ``None`` and zero both resolve to ``default`` (given as a percentage).

    Example:
        >>> percent_fraction(None, HUNDRED)
        Decimal('1')
        >>> percent_fraction(Decimal("80"), HUNDRED)
        Decimal('0.8')
    """
    if percent is None:
        return default / HUNDRED
    pct = to_decimal(percent)
    if pct == ZERO:
        return default / HUNDRED
    return pct / HUNDRED


def quantize_money(value: Decimal) -> Decimal:
    """Round a money value to cents (display only; never used mid-computation)."""
    return value.quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)
