"""
Money Rounding Module

Deterministic two-decimal rounding for every monetary figure. NEVER uses
float arithmetic for money: inputs are converted through str() first.
"""

import math
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Any, Optional

# High precision for intermediate results; rounding happens explicitly
getcontext().prec = 28

CENT = Decimal('0.01')
ZERO = Decimal('0')


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """
    Convert a number or numeric string to Decimal.

    Returns ``default`` for None, blank strings, non-numeric text and
    non-finite values (NaN, infinity).
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        return value if value.is_finite() else default
    if isinstance(value, float) and not math.isfinite(value):
        return default
    text = str(value).strip()
    if not text:
        return default
    try:
        result = Decimal(text)
    except InvalidOperation:
        return default
    return result if result.is_finite() else default


def round_money(value: Any) -> Decimal:
    """Round to two decimal places, half away from zero"""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def floor_zero(value: Decimal) -> Decimal:
    """Clamp negative amounts to zero"""
    return value if value > ZERO else ZERO


def format_money(value: Decimal) -> str:
    """Format for display with two decimals and thousands separators"""
    return f"{round_money(value):,.2f}"
