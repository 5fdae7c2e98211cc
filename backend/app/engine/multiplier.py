"""
Multiplier arithmetic. Floats are converted through their shortest repr so
floor(10 * 1.2) is 12, not 11.
"""
import math
from decimal import Decimal


def _dec(value: float | int) -> Decimal:
    return Decimal(str(value))


def combine(*multipliers: float) -> float:
    """Multiplicative stacking: 2x and 3x compound to 6x."""
    total = Decimal(1)
    for m in multipliers:
        total *= _dec(m)
    return float(total)


def apply_multiplier(base: int, multiplier: float) -> int:
    """floor(base * multiplier)"""
    return math.floor(_dec(base) * _dec(multiplier))
