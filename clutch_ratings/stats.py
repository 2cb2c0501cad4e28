"""
Numeric primitives shared by the player metrics and manager rating engines.
"""

import math
from datetime import datetime
from typing import List, Sequence, Tuple

import numpy as np


ConfidenceCurve = Sequence[Tuple[float, float]]

SECONDS_PER_WEEK = 7 * 24 * 60 * 60


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean; 0 for an empty sample."""
    if len(values) == 0:
        return 0.0
    return float(np.mean(values))


def stddev(values: Sequence[float]) -> float:
    """Sample standard deviation (n - 1 denominator); 0 when n < 2."""
    if len(values) < 2:
        return 0.0
    return float(np.std(values, ddof=1))


def population_stddev(values: Sequence[float]) -> float:
    """Population standard deviation (n denominator); 0 for an empty sample."""
    if len(values) == 0:
        return 0.0
    return float(np.std(values))


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def percentile_rank(value: float, sorted_ascending: Sequence[float]) -> float:
    """
    Fraction of the sample strictly below ``value``.

    An empty sample carries no information, so the neutral prior 0.5 is
    returned.
    """
    n = len(sorted_ascending)
    if n == 0:
        return 0.5
    below = int(np.searchsorted(np.asarray(sorted_ascending, dtype=float), value, side="left"))
    return below / n


def interpolate_confidence(x: float, curve: ConfidenceCurve) -> float:
    """
    Piecewise-linear lookup of a confidence percentage.

    ``curve`` is an ascending list of ``(sample_count, confidence)`` control
    points. Outside the curve the nearest boundary value is returned.
    """
    first_x, first_y = curve[0]
    last_x, last_y = curve[-1]
    if x <= first_x:
        return float(first_y)
    if x >= last_x:
        return float(last_y)
    for (x0, y0), (x1, y1) in zip(curve, curve[1:]):
        if x0 <= x <= x1:
            if x1 == x0:
                return float(y1)
            t = (x - x0) / (x1 - x0)
            return y0 + t * (y1 - y0)
    return float(last_y)


def round_half_up(value: float, digits: int = 0) -> float:
    """Round with halves going up (toward +inf), unlike Python's round()."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def round_int(value: float) -> int:
    return int(math.floor(value + 0.5))


def slope(values: Sequence[float]) -> float:
    """Least-squares slope of ``values`` against their index 0..n-1."""
    n = len(values)
    if n < 2:
        return 0.0
    xs = np.arange(n, dtype=float)
    ys = np.asarray(values, dtype=float)
    x_dev = xs - xs.mean()
    denominator = float(np.sum(x_dev ** 2))
    if denominator == 0:
        return 0.0
    return float(np.sum(x_dev * (ys - ys.mean())) / denominator)


def weeks_between(earlier: datetime, later: datetime) -> float:
    """Elapsed weeks from ``earlier`` to ``later``, never negative."""
    return max(0.0, (later - earlier).total_seconds() / SECONDS_PER_WEEK)


def sorted_values(values: List[float]) -> List[float]:
    return sorted(v for v in values if v is not None)
