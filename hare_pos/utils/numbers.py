"""
Numeric coercion: anything non-numeric becomes a default instead of NaN.
"""
import math
from typing import Any

# Float tolerance for stock comparisons
STOCK_EPSILON = 1e-9


def to_number(value: Any, default: float = 0.0) -> float:
    """
    Coerce a loosely-typed value to a finite float.

    Args:
        value: int, float, numeric string, None, or anything else
        default: Returned when the value is missing, non-numeric, NaN or infinite

    Returns:
        A finite float
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def to_int(value: Any, default: int = 0) -> int:
    """Coerce to int, truncating decimals."""
    return int(to_number(value, default))


def non_negative(value: Any) -> float:
    return max(0.0, to_number(value))
