"""Shared statistics for correlation analysis.

All functions are total: degenerate input (mismatched lengths, empty or
zero-variance series) yields a defined value instead of NaN or an
exception, so callers never have to special-case unstable statistics.
"""
import math
from typing import Any, Dict, Iterable, Sequence

# Strength tier lower bounds (inclusive)
STRONG_THRESHOLD = 0.7
MODERATE_THRESHOLD = 0.5
WEAK_THRESHOLD = 0.3


def pearson_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson correlation coefficient of two equally long series.

    Returns 0.0 when the series differ in length, are empty, or either
    has zero variance. The result is clamped to [-1, 1] to absorb
    floating point drift.
    """
    n = len(x)
    if n == 0 or n != len(y):
        return 0.0

    mean_x = sum(x) / n
    mean_y = sum(y) / n

    cov = 0.0
    var_x = 0.0
    var_y = 0.0
    for xi, yi in zip(x, y):
        dx = xi - mean_x
        dy = yi - mean_y
        cov += dx * dy
        var_x += dx * dx
        var_y += dy * dy

    denominator = math.sqrt(var_x * var_y)
    if denominator == 0.0:
        return 0.0

    return max(-1.0, min(1.0, cov / denominator))


def lag_correlation(values: Sequence[float], lag: int) -> float:
    """Correlation of a series with its ``lag``-shifted copy.

    The non-overlapping tail is truncated; a series no longer than the
    lag has no overlap and yields 0.0.
    """
    if lag <= 0 or len(values) <= lag:
        return 0.0
    return pearson_correlation(values[:-lag], values[lag:])


def trend_strength(values: Sequence[float]) -> float:
    """Absolute correlation between position and value."""
    return abs(pearson_correlation([float(i) for i in range(len(values))], values))


def classify_strength(coefficient: float) -> str:
    """Map a coefficient magnitude to a strength tier.

    Lower bounds are inclusive: 0.7 is strong, 0.5 moderate, 0.3 weak.
    """
    magnitude = abs(coefficient)
    if magnitude >= STRONG_THRESHOLD:
        return "strong"
    if magnitude >= MODERATE_THRESHOLD:
        return "moderate"
    if magnitude >= WEAK_THRESHOLD:
        return "weak"
    return "negligible"


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def mean(values: Iterable[float]) -> float:
    values = list(values)
    return sum(values) / len(values) if values else 0.0


def confidence_interval(coefficient: float, half_width: float = 0.1) -> Dict[str, float]:
    """Coarse fixed-width interval around a coefficient, clamped to [-1, 1].

    This is an approximation for display, not a significance test.
    """
    return {
        "lower_bound": max(-1.0, coefficient - half_width),
        "upper_bound": min(1.0, coefficient + half_width),
    }


def assess_data_quality(rows: Sequence[Any]) -> Dict[str, Any]:
    """Score the sample backing an analysis.

    Args:
        rows: DailyAggregate-like objects with user_id, subject and
            data_points attributes

    Returns:
        Dictionary with counts and a low/medium/high quality label
    """
    total = len(rows)
    unique_users = len({r.user_id for r in rows})
    unique_subjects = len({r.subject for r in rows})
    avg_points = sum(r.data_points for r in rows) / total if total else 0.0

    if total > 100 and unique_users > 10:
        quality = "high"
    elif total > 30 and unique_users > 5:
        quality = "medium"
    else:
        quality = "low"

    return {
        "total_records": total,
        "unique_users": unique_users,
        "unique_subjects": unique_subjects,
        "avg_data_points_per_record": round(avg_points),
        "quality": quality,
    }
