"""
Small shared helpers: UTC timestamps and money rounding.
"""

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_money(value) -> Decimal:
    """Convert to a Decimal with exactly 2 places."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
