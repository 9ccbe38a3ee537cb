"""
Money helpers shared by ingress records, aggregation and rollups.

All monetary values are Decimal. Parsing never raises: anything that is not
a recognizable amount becomes None so callers can apply their fallback chain.
"""
import math
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Union

ZERO = Decimal("0")
CENT = Decimal("0.01")

MoneyInput = Union[str, float, int, Decimal, None]


def parse_money(value: MoneyInput) -> Optional[Decimal]:
    """
    Parse a currency value to Decimal.

    Handles:
        " 715,643.50 " → Decimal('715643.50')
        "$1,234.56"    → Decimal('1234.56')
        "-$500.00"     → Decimal('-500.00')
        "($1,000.00)"  → Decimal('-1000.00') (accounting negative)
        480            → Decimal('480')
        None, NaN, "", "-", "abc" → None

    Returns:
        Decimal amount, or None when the value is missing or malformed
    """
    if value is None:
        return None

    if isinstance(value, bool):
        return None

    if isinstance(value, Decimal):
        return value if value.is_finite() else None

    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return None
        return Decimal(str(value))

    if isinstance(value, int):
        return Decimal(value)

    s = str(value).strip()
    if s == '' or s == '-':
        return None

    # Detect negative (prefix '-', suffix '-', or parentheses for accounting notation)
    negative = False
    if s.startswith('-') or s.endswith('-') or (s.startswith('(') and s.endswith(')')):
        negative = True

    s = re.sub(r'[^\d.]', '', s)

    if s == '' or s == '.':
        return None

    if s.count('.') > 1:
        return None

    try:
        d = Decimal(s)
    except (InvalidOperation, ValueError):
        return None
    return -d if negative else d


def to_cents(amount: Decimal) -> Decimal:
    """Round a Decimal amount to whole cents (half up)."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def safe_percent(numerator: Decimal, denominator: Decimal) -> float:
    """Percentage of numerator over denominator; 0 when the denominator is 0."""
    if denominator == 0:
        return 0.0
    return float(numerator / denominator * 100)


def money_to_display(amount: Decimal) -> str:
    """Format a Decimal amount as a USD display string."""
    rounded = to_cents(amount)
    if rounded < 0:
        return f"-${abs(rounded):,.2f}"
    return f"${rounded:,.2f}"
