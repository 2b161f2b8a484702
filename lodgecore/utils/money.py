from decimal import Decimal, ROUND_HALF_UP
from typing import Union

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def to_money(value: Number) -> Decimal:
    """Quantize any numeric input to two decimals"""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def percent_of(amount: Number, percent: Number) -> Decimal:
    return to_money(to_money(amount) * Decimal(str(percent)) / Decimal("100"))


def to_minor_units(amount: Number) -> int:
    """Decimal dollars to integer cents (Stripe convention)"""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return to_money(Decimal(amount) / Decimal(100))
