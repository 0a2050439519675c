"""
Pricing Policy
==============
Pure policy functions: money rounding, tax, order numbers.

Deterministic: same input always produces same output (except order
numbers, which must be unique).
"""

import secrets
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional


CENTS = Decimal("0.01")
DEFAULT_TAX_RATE = Decimal("0.08")
DEFAULT_ORDER_NUMBER_PREFIX = "ORD"


def to_money(value: Any) -> Decimal:
    """
    Normalize a price to Decimal.

    Floats go through str() so 10.99 stays 10.99 and does not pick up
    binary noise.

    Raises:
        ValueError: If value is not a number or is negative
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid money value: {value!r}")

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float, str)):
        try:
            amount = Decimal(str(value).replace("$", "").replace(",", "").strip())
        except ArithmeticError:
            raise ValueError(f"Invalid money value: {value!r}")
    else:
        raise ValueError(f"Invalid money value: {value!r}")

    if not amount.is_finite() or amount < 0:
        raise ValueError(f"Invalid money value: {value!r}")

    return amount


def round_to_cents(amount: Decimal) -> Decimal:
    """Round half-up to 2 decimal places."""
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def calculate_tax(subtotal: Decimal, rate: Decimal = DEFAULT_TAX_RATE) -> Decimal:
    """
    Calculate tax for a subtotal.

    Args:
        subtotal: Order subtotal
        rate: Tax rate (0.08 = 8%)

    Returns:
        Tax amount rounded half-up to cents
    """
    return round_to_cents(Decimal(subtotal) * Decimal(rate))


def generate_order_number(
    prefix: str = DEFAULT_ORDER_NUMBER_PREFIX,
    now: Optional[datetime] = None
) -> str:
    """
    Generate a human-referenceable order number.

    Format: PREFIX-YYYYMMDDHHMMSSmmm-XXXXXX (UTC timestamp, 24 random bits).
    Lexicographic order follows creation time to the millisecond.
    Collisions are possible (same millisecond, same suffix) and must be
    retried by the caller.
    """
    now = now or datetime.utcnow()
    stamp = now.strftime("%Y%m%d%H%M%S") + f"{now.microsecond // 1000:03d}"
    suffix = secrets.token_hex(3).upper()
    return f"{prefix}-{stamp}-{suffix}"
