"""
Deterministic demo data source.

Seeded synthetic revenue and activity used when the service runs in demo mode
or when the live feed is unavailable. The seed is derived from the end date,
so every request on the same day sees the same data.

This is a replaceable data source: the analytics core only consumes the
RevenuePoint / ActivityEvent lists returned here.
"""

from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Sequence

import numpy as np

from ops_copilot.models import (
    ActivityEvent,
    ActivityStatus,
    KpiDeltas,
    Kpis,
    RevenuePoint,
)
from ops_copilot.services.stats import clamp, round_half_up


STORES: List[str] = [
    "Downtown",
    "River North",
    "West Loop",
    "South Market",
    "Lakeside",
    "Uptown",
    "Old Town",
    "Mission",
    "SoMa",
    "Capitol Hill",
]

CHANNELS: List[str] = ["DoorDash", "Uber Eats", "Google", "Website", "Catering"]

ACTION_TEMPLATES: List[str] = [
    "Menu sync completed",
    "Promo pushed to {channel}",
    "Photo audit completed",
    "Store hours updated",
    "Refund workflow reviewed",
    "Delivery radius adjusted",
    "Catering request confirmed",
    "Outage alert acknowledged",
    "Payment provider reconciliation",
    "Customer review response sent",
]

# Days-ago offsets that receive an injected dip and spike
_DIP_DAYS_AGO: int = 9
_SPIKE_DAYS_AGO: int = 17


def _date_seed(end_date: date, offset: int = 0) -> int:
    return int(end_date.strftime("%Y%m%d")) + offset


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def get_revenue_series(days: int = 30, end_date: Optional[date] = None) -> List[RevenuePoint]:
    """
    Generate `days` of daily revenue ending at `end_date` (inclusive).

    Weekends get a lift, Mondays a dip, plus a gentle upward trend and noise.
    One dip and one spike are injected so the anomaly detector has something
    to find.
    """
    end = end_date or _utc_today()
    rng = np.random.default_rng(_date_seed(end))

    base = 12800 + rng.random() * 600
    trend = 22 + rng.random() * 8

    series: List[RevenuePoint] = []
    for days_ago in range(days - 1, -1, -1):
        day = end - timedelta(days=days_ago)

        weekday = day.weekday()
        weekend_lift = 1.14 if weekday in (4, 5) else 1.0
        monday_dip = 0.92 if weekday == 0 else 1.0

        noise = (rng.random() - 0.5) * 1200
        revenue = (base + trend * (days - days_ago)) * weekend_lift * monday_dip + noise

        if days_ago == _DIP_DAYS_AGO:
            revenue *= 0.82
        if days_ago == _SPIKE_DAYS_AGO:
            revenue *= 1.23

        series.append(
            RevenuePoint(date=day, revenue=int(clamp(round_half_up(revenue), 6800, 24000)))
        )

    return series


def get_activity_rows(count: int = 84, end: Optional[datetime] = None) -> List[ActivityEvent]:
    """Generate `count` activity events walking backwards from `end`."""
    end_ts = end or datetime.now(timezone.utc)
    rng = np.random.default_rng(_date_seed(end_ts.date(), offset=99))

    rows: List[ActivityEvent] = []
    offset_minutes = 0
    for i in range(count):
        timestamp = end_ts - timedelta(minutes=offset_minutes)
        offset_minutes += 12 + int(rng.integers(0, 14))

        channel = CHANNELS[int(rng.integers(0, len(CHANNELS)))]
        store = STORES[int(rng.integers(0, len(STORES)))]
        action = ACTION_TEMPLATES[int(rng.integers(0, len(ACTION_TEMPLATES)))]

        status = ActivityStatus.COMPLETED if rng.random() > 0.22 else ActivityStatus.PENDING
        revenue_delta = round_half_up(((rng.random() - 0.35) * 850) / 10) * 10

        rows.append(
            ActivityEvent(
                id=f"act_{timestamp.date().isoformat()}_{i}",
                timestamp=timestamp,
                store=store,
                channel=channel,
                action=action.replace("{channel}", channel),
                status=status,
                revenue_delta=revenue_delta,
            )
        )

    return rows


def get_kpis(series: Sequence[RevenuePoint]) -> Kpis:
    """Headline KPIs. Only total revenue is computed; the rest are demo constants."""
    return Kpis(
        total_revenue_30d=sum(p.revenue for p in series),
        active_stores=42,
        upcoming_catering_orders=14,
        on_time_pickup_rate=0.93,
        deltas=KpiDeltas(
            total_revenue_30d=4.2,
            active_stores=0.0,
            upcoming_catering_orders=-6.4,
            on_time_pickup_rate=1.1,
        ),
    )
