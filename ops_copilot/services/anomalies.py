"""
Rolling Z-Score Revenue Anomaly Detection Service.

Scans a daily revenue series and flags days whose revenue deviates strongly
from the trailing baseline window.

Algorithm Overview:
    For each index i >= window, the preceding `window` revenue values form the
    baseline. The baseline mean and population standard deviation give the
    z-score of the current value:

        z = (revenue[i] - mean(baseline)) / std(baseline)

    Days with |z| >= z_threshold are reported, strongest first.

Cold Start:
    The first `window` points never produce an anomaly because they have no
    complete baseline.

Flat Baselines:
    A baseline with zero standard deviation cannot be scored and the point is
    skipped rather than treated as infinitely anomalous. Consumers depend on
    this: a perfectly flat week followed by any change yields no anomaly.

Algorithm Parameters:
    - DEFAULT_WINDOW = 7: One week of daily baseline
    - DEFAULT_Z_THRESHOLD = 2.2: Flag threshold in standard deviations

Usage:
    from ops_copilot.services.anomalies import detect_anomalies

    anomalies = detect_anomalies(series, window=7, z_threshold=2.2)
    top = anomalies[0] if anomalies else None
"""

import math
from typing import List, Sequence

import numpy as np

from ops_copilot.models import Anomaly, AnomalyDirection, RevenuePoint
from ops_copilot.services.stats import mean, round_half_up, std_dev


# =============================================================================
# Constants
# =============================================================================

DEFAULT_WINDOW: int = 7

DEFAULT_Z_THRESHOLD: float = 2.2


# =============================================================================
# Detection
# =============================================================================


def detect_anomalies(
    series: Sequence[RevenuePoint],
    window: int = DEFAULT_WINDOW,
    z_threshold: float = DEFAULT_Z_THRESHOLD,
) -> List[Anomaly]:
    """
    Detect revenue anomalies using a trailing-window z-score.

    Args:
        series: Daily revenue points ordered ascending by date.
        window: Number of preceding points forming each baseline.
        z_threshold: Minimum |z| for a point to be reported.

    Returns:
        Anomalies sorted by descending |z|. Index 0 is the strongest anomaly
        and is read downstream as the "top anomaly". Ties keep series order.

    Raises:
        ValueError: If window is less than 1.

    Edge Cases:
        - Fewer than window + 1 points: Returns []
        - Zero-deviation baseline: Point skipped (no division by zero)

    Example:
        >>> anomalies = detect_anomalies(series, window=7, z_threshold=2.2)
        >>> anomalies[0].direction
        <AnomalyDirection.DOWN: 'down'>
    """
    if window < 1:
        raise ValueError(f"window must be >= 1, got {window}")

    points = list(series or [])
    if len(points) <= window:
        return []

    revenues = np.asarray([p.revenue for p in points], dtype=np.float64)
    anomalies: List[Anomaly] = []

    for i in range(window, len(points)):
        baseline = revenues[i - window:i]
        avg = mean(baseline)
        deviation = std_dev(baseline)

        if deviation == 0 or not math.isfinite(deviation):
            continue

        current = points[i].revenue
        z = (current - avg) / deviation

        if abs(z) >= z_threshold:
            anomalies.append(
                Anomaly(
                    date=points[i].date,
                    revenue=current,
                    z=z,
                    direction=AnomalyDirection.DOWN if z < 0 else AnomalyDirection.UP,
                    baseline_avg=round_half_up(avg),
                )
            )

    # sorted() is stable, so equal |z| keeps chronological order
    return sorted(anomalies, key=lambda a: abs(a.z), reverse=True)
