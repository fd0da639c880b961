"""
Short-horizon revenue forecast.

A deliberately simple linear extrapolation: the average of the last week,
moved along the slope between the last two weekly averages. The contract is
determinism and calendar continuity, not statistical accuracy.

Usage:
    from ops_copilot.services.forecast import build_forecast

    forecast = build_forecast(series, days=7)
"""

from datetime import timedelta
from typing import List, Sequence

from ops_copilot.models import ForecastPoint, RevenuePoint
from ops_copilot.services.stats import mean, round_half_up


TREND_WINDOW_DAYS: int = 7

DEFAULT_FORECAST_DAYS: int = 7


def build_forecast(
    series: Sequence[RevenuePoint],
    days: int = DEFAULT_FORECAST_DAYS,
) -> List[ForecastPoint]:
    """
    Project revenue for the `days` calendar days after the last observation.

    last_avg is the mean of the final 7 revenues; prev_avg the mean of the 7
    before those. With fewer than 14 points there is no full previous week and
    prev_avg equals last_avg (flat trend). Each day i in 1..days is projected
    at last_avg + slope * i with slope = (last_avg - prev_avg) / 7, floored at
    zero and rounded.

    Args:
        series: Daily revenue points ordered ascending by date.
        days: Number of future days to project.

    Returns:
        Exactly `days` points dated last_date + 1 .. last_date + days, or []
        for an empty series.

    Raises:
        ValueError: If days is negative.
    """
    if days < 0:
        raise ValueError(f"days must be >= 0, got {days}")

    points = list(series or [])
    if not points:
        return []

    revenues = [p.revenue for p in points]
    last_window = revenues[-TREND_WINDOW_DAYS:]
    last_avg = mean(last_window)
    if len(revenues) >= 2 * TREND_WINDOW_DAYS:
        prev_avg = mean(revenues[-2 * TREND_WINDOW_DAYS:-TREND_WINDOW_DAYS])
    else:
        prev_avg = last_avg

    slope = (last_avg - prev_avg) / TREND_WINDOW_DAYS
    last_date = points[-1].date

    return [
        ForecastPoint(
            date=last_date + timedelta(days=i),
            revenue=max(0, round_half_up(last_avg + slope * i)),
        )
        for i in range(1, days + 1)
    ]
