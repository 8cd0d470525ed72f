"""
Money helpers. The engine keeps every amount in integer cents.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

CENTS = Decimal("0.01")

Number = Union[int, float, str, Decimal, None]


def to_cents(value: Number) -> int:
    """Convert a major-unit amount to integer cents (half up)."""
    if value is None or value == "":
        return 0
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    return int((amount.quantize(CENTS, rounding=ROUND_HALF_UP) * 100).to_integral_value())


def line_amount_cents(quantity: Number, rate: Number) -> int:
    """Quantity x rate, rounded once at the end."""
    if quantity is None or rate is None:
        return 0
    q = quantity if isinstance(quantity, Decimal) else Decimal(str(quantity))
    r = rate if isinstance(rate, Decimal) else Decimal(str(rate))
    return to_cents(q * r)


def cents_to_display(cents: Optional[int], symbol: str = "$") -> str:
    """Format cents for logs and CLI output, e.g. 123456 -> '$1,234.56'."""
    if cents is None:
        return f"{symbol}0.00"
    sign = "-" if cents < 0 else ""
    return f"{sign}{symbol}{abs(cents) / 100:,.2f}"


def amounts_differ(a: int, b: int, epsilon_cents: int = 1) -> bool:
    """True when two cent amounts differ by at least epsilon."""
    return abs((a or 0) - (b or 0)) >= epsilon_cents
