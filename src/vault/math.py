"""
Integer fixed-point helpers with explicit rounding direction.
"""

from enum import Enum


class Rounding(Enum):
    FLOOR = "floor"
    CEIL = "ceil"


def mul_div(x: int, y: int, denominator: int, rounding: Rounding = Rounding.FLOOR) -> int:
    """Return x * y / denominator rounded in the requested direction."""
    if denominator <= 0:
        raise ZeroDivisionError(f"mul_div denominator must be > 0, got {denominator}")
    quotient, remainder = divmod(x * y, denominator)
    if rounding is Rounding.CEIL and remainder:
        quotient += 1
    return quotient


def zero_floor_sub(x: int, y: int) -> int:
    return x - y if x > y else 0
