"""Money arithmetic helpers.

All monetary values are stored as floats rounded to cents. Rounding goes
through Decimal so halves round away from zero regardless of binary
float representation (``round2(2.675) == 2.68``).
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Union

Number = Union[int, float, Decimal]

CENT = Decimal("0.01")


def to_decimal(value: Optional[Number]) -> Decimal:
    """Convert a number to Decimal via its shortest repr (None -> 0)."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round2(value: Optional[Number]) -> float:
    """Round to 2 decimals, half away from zero."""
    return float(to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))


def multiply(a: Optional[Number], b: Optional[Number]) -> float:
    """round2(a * b) computed exactly."""
    return round2(to_decimal(a) * to_decimal(b))


def add(a: Optional[Number], b: Optional[Number]) -> float:
    """round2(a + b) computed exactly."""
    return round2(to_decimal(a) + to_decimal(b))


def sum_rounded(values: Iterable[Optional[Number]]) -> float:
    """Accumulate values, rounding to cents after every addition."""
    total = 0.0
    for value in values:
        total = add(total, value)
    return total


def within_tolerance(a: Optional[Number], b: Optional[Number], tolerance: float = 0.01) -> bool:
    """True if |a - b| <= tolerance (compared exactly in Decimal)."""
    return abs(to_decimal(a) - to_decimal(b)) <= to_decimal(tolerance)
