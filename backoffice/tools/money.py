"""
Cent-level money helpers shared by the totals engine and GL posting.

Floats are converted through their shortest repr (`str`) before rounding, so
an amount written as 1.005 rounds as the decimal 1.005 and not as its binary
approximation.
"""
import math
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_HALF_UP
from typing import Literal, Union

RoundingMode = Literal["HALF_UP", "HALF_EVEN"]
Amount = Union[int, float, Decimal]

CENT = Decimal("0.01")

ROUNDING_MODES = {
    "HALF_UP": ROUND_HALF_UP,      # half away from zero
    "HALF_EVEN": ROUND_HALF_EVEN,  # banker's rounding
}


def to_decimal(amount: Amount) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))


def is_finite(amount: Amount) -> bool:
    if isinstance(amount, bool) or not isinstance(amount, (int, float, Decimal)):
        return False
    if isinstance(amount, Decimal):
        return amount.is_finite()
    return math.isfinite(amount)


def round_currency(amount: Amount, mode: RoundingMode = "HALF_UP") -> float:
    """Round to the cent using the given mode."""
    if mode not in ROUNDING_MODES:
        raise ValueError(f"Unsupported rounding mode: {mode}")
    return float(to_decimal(amount).quantize(CENT, rounding=ROUNDING_MODES[mode]))


def is_valid_currency(amount: Amount) -> bool:
    """True when the amount is finite with at most two decimal places."""
    if not is_finite(amount):
        return False
    value = to_decimal(amount)
    return value == value.quantize(CENT)


def sum_currency(amounts) -> Decimal:
    return sum((to_decimal(a) for a in amounts), Decimal("0"))
