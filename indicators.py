"""Least-squares trend over a window of price points.

All functions are pure: they take a snapshot (any sequence of ``PricePoint``)
and never touch the shared window. Time is measured in seconds relative to the
first point, so the slope is in price units per second and the intercept is the
fitted price at the first point's timestamp.
"""

from typing import Sequence

from models import PricePoint, TrendResult


def compute_trend(points: Sequence[PricePoint]) -> TrendResult:
    """Fit ``price = slope * x + intercept`` by ordinary least squares.

    Contract:
    - Input: points in arrival order; ``x_i = (t_i - t_0) / 1000``
    - Output: ``TrendResult(slope, intercept)``
    - Edge cases:
      * fewer than two points: slope 0, intercept = first price (or 0.0 if empty)
      * every point shares one timestamp (zero denominator): slope 0,
        intercept = mean price. Never divides by zero, never returns NaN.
    """
    n = len(points)
    if n < 2:
        return TrendResult(slope=0.0, intercept=float(points[0].price) if n else 0.0)

    t0 = points[0].timestamp
    sum_x = sum_y = sum_xy = sum_xx = 0.0
    for p in points:
        x = (p.timestamp - t0) / 1000.0
        y = float(p.price)
        sum_x += x
        sum_y += y
        sum_xy += x * y
        sum_xx += x * x

    denominator = n * sum_xx - sum_x * sum_x
    if denominator == 0.0:
        return TrendResult(slope=0.0, intercept=sum_y / n)

    slope = (n * sum_xy - sum_x * sum_y) / denominator
    intercept = (sum_y - slope * sum_x) / n
    return TrendResult(slope=slope, intercept=intercept)


def classify_direction(slope: float, epsilon: float = 0.00001) -> str:
    """Return "UP" | "DOWN" | "FLAT" by comparing ``slope`` against +/- ``epsilon``."""
    if slope > epsilon:
        return "UP"
    if slope < -epsilon:
        return "DOWN"
    return "FLAT"


def extrapolate_price(trend: TrendResult, elapsed_s: float, ahead_s: float = 1.0) -> float:
    """Evaluate the trend line ``ahead_s`` seconds past ``elapsed_s``."""
    return trend.slope * (elapsed_s + ahead_s) + trend.intercept
