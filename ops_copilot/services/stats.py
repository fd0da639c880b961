"""
Statistical helper functions shared by the analytics services.

Rounding follows the dashboard's convention (halves round toward +inf) so the
integers served by the API match what the frontend would compute; Python's
built-in round() uses banker's rounding and would disagree on exact halves.
"""

import math
from typing import Sequence

import numpy as np


def mean(values: Sequence[float]) -> float:
    """
    Calculate the arithmetic mean of a list of values.

    Args:
        values: Sequence of numeric values

    Returns:
        Arithmetic mean, or 0 if empty
    """
    if len(values) == 0:
        return 0.0
    return float(np.mean(np.asarray(values, dtype=np.float64)))


def std_dev(values: Sequence[float]) -> float:
    """
    Calculate the population standard deviation (ddof=0) of a list of values.

    Args:
        values: Sequence of numeric values

    Returns:
        Standard deviation, or 0 if empty
    """
    if len(values) == 0:
        return 0.0
    return float(np.std(np.asarray(values, dtype=np.float64)))


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves toward +inf (2.5 -> 3, -2.5 -> -2)."""
    return int(math.floor(value + 0.5))


def clamp(value: float, min_value: float, max_value: float) -> float:
    return min(max_value, max(min_value, value))
