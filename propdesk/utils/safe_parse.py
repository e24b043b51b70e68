"""Numeric boundary for values read from storage and market data.

Every balance, price and share count that crosses into the engine from the
database, a rules config, an order book or a price feed goes through this
module. Corrupt input (None, empty strings, garbage, NaN, Infinity) never
propagates into risk math; it collapses to a caller-supplied default instead.

Money is handled as ``decimal.Decimal`` throughout and persisted as a
fixed-point string.
"""

import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

ZERO = Decimal("0")
ONE = Decimal("1")

# Persisted precision
MONEY_QUANTUM = Decimal("0.000001")
PRICE_QUANTUM = Decimal("0.000001")
SHARES_QUANTUM = Decimal("0.000001")


def safe_decimal(value: Any, default: Optional[Decimal] = ZERO) -> Optional[Decimal]:
    """
    Parse a value into a finite Decimal.

    Args:
        value: Raw value (str, int, float, Decimal or None)
        default: Returned when the value is missing or not a finite number

    Returns:
        Finite Decimal, or ``default``

    Example:
        >>> safe_decimal("12.5")
        Decimal('12.5')
        >>> safe_decimal("NaN")
        Decimal('0')
    """
    if value is None or isinstance(value, bool):
        return default

    if isinstance(value, Decimal):
        return value if value.is_finite() else default

    if isinstance(value, float):
        if not math.isfinite(value):
            return default
        # repr() keeps the shortest round-tripping form (0.1 -> '0.1')
        return Decimal(repr(value))

    if isinstance(value, int):
        return Decimal(value)

    text = str(value).strip()
    if not text:
        return default

    try:
        parsed = Decimal(text)
    except (InvalidOperation, ValueError):
        return default

    return parsed if parsed.is_finite() else default


def safe_float(value: Any, default: float = 0.0) -> float:
    """Parse a value into a finite float, falling back to ``default``."""
    parsed = safe_decimal(value, default=None)
    if parsed is None:
        return default
    return float(parsed)


def quantize_money(value: Decimal) -> Decimal:
    """Round a monetary amount to persisted precision."""
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def quantize_price(value: Decimal) -> Decimal:
    """Round a price to persisted precision."""
    return value.quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)


def quantize_shares(value: Decimal) -> Decimal:
    """Round a share count to persisted precision."""
    return value.quantize(SHARES_QUANTUM, rounding=ROUND_HALF_UP)


def to_db(value: Optional[Decimal]) -> Optional[str]:
    """Serialize a Decimal for a TEXT column."""
    if value is None:
        return None
    return format(value, "f")
