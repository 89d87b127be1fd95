# mlm_engine/utils/money.py
"""
Decimal helpers for monetary amounts.
"""
from decimal import Decimal, ROUND_DOWN

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def toDecimal(value) -> Decimal:
    """Convert int/str/Decimal (never float) to Decimal."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        raise TypeError("Monetary amounts must not be floats")
    return Decimal(str(value))


def quantize(amount) -> Decimal:
    """Round down to whole cents - payouts never round up."""
    return toDecimal(amount).quantize(CENT, rounding=ROUND_DOWN)


def percentOf(amount, percentage) -> Decimal:
    """`percentage` percent of `amount`, rounded down to cents."""
    return quantize(toDecimal(amount) * toDecimal(percentage) / HUNDRED)
