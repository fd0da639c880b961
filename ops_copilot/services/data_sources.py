"""
Data-mode aware access to revenue and activity data.

AnalyticsDataProvider decides, per the configured DataMode, whether revenue and
activity come from the deterministic demo generator or from the upstream
activity cache, and tags every result with its provenance:

    mode    | revenue                                | activity
    --------+----------------------------------------+---------------------------
    demo    | demo                                   | demo
    mixed   | demo                                   | cache tag / demo_fallback
    live    | activity_<cache tag> / demo_fallback   | cache tag / demo_fallback

Upstream problems never surface as errors here; they show up as a
demo_fallback tag.
"""

import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence, Tuple, TypeVar

from ops_copilot.core.config import Settings
from ops_copilot.models import (
    ActivityEvent,
    DataMode,
    DataSource,
    RevenuePoint,
    SortDirection,
    activity_source_tag,
)
from ops_copilot.services import demo_data
from ops_copilot.services.live_activity import (
    ActivityCache,
    derive_revenue_series_from_activity,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SERIES_DAYS: int = 30


class AnalyticsDataProvider:
    """
    Resolve revenue series and activity rows for the current data mode.

    Args:
        settings: Application settings (data mode, cache TTL, item cap).
        activity_cache: Shared upstream activity cache.
    """

    def __init__(self, settings: Settings, activity_cache: ActivityCache) -> None:
        self.settings = settings
        self.activity_cache = activity_cache

    @property
    def data_mode(self) -> DataMode:
        return self.settings.data_mode

    async def get_revenue_series(
        self, days: int = DEFAULT_SERIES_DAYS
    ) -> Tuple[List[RevenuePoint], str]:
        """
        Return (series, data_source) for the revenue endpoints and the copilot.

        Live mode derives revenue from the activity feed, ending at the day the
        rows were fetched.
        """
        if self.data_mode != DataMode.LIVE:
            return demo_data.get_revenue_series(days=days), DataSource.DEMO.value

        result = await self.activity_cache.get_activity_rows(
            ttl_ms=self.settings.cache_ttl_ms,
            max_items=self.settings.live_activity_max_items,
        )

        derived: Optional[List[RevenuePoint]] = None
        if result.rows is not None:
            end_date = (
                datetime.fromtimestamp(result.fetched_at_ms / 1000, tz=timezone.utc).date()
                if result.fetched_at_ms
                else None
            )
            derived = derive_revenue_series_from_activity(result.rows, days=days, end_date=end_date)

        if derived:
            return derived, activity_source_tag(result.source)

        logger.info("Live revenue unavailable; serving demo revenue")
        return demo_data.get_revenue_series(days=days), DataSource.DEMO_FALLBACK.value

    async def get_activity_rows(self, demo_count: int) -> Tuple[List[ActivityEvent], str]:
        """Return (rows, data_source); demo_count sizes the demo generator output."""
        if self.data_mode == DataMode.DEMO:
            return demo_data.get_activity_rows(count=demo_count), DataSource.DEMO.value

        result = await self.activity_cache.get_activity_rows(
            ttl_ms=self.settings.cache_ttl_ms,
            max_items=self.settings.live_activity_max_items,
        )
        if result.rows is not None:
            return list(result.rows), result.source.value

        return demo_data.get_activity_rows(count=demo_count), DataSource.DEMO_FALLBACK.value


def _sort_value(item: Any, key: str) -> Any:
    if isinstance(item, dict):
        value = item.get(key)
    else:
        value = getattr(item, key, None)
    # Enums sort by their wire value
    return getattr(value, "value", value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def sort_by_key(
    items: Sequence[T],
    key: str,
    direction: SortDirection = SortDirection.ASC,
) -> List[T]:
    """
    Stable sort of records by one field.

    None values always go last regardless of direction. When every present
    value is numeric the comparison is numeric; otherwise values compare as
    strings (datetimes by their ISO form).

    Args:
        items: Records (pydantic models, objects or dicts).
        key: Field name to sort by.
        direction: asc or desc.

    Returns:
        A new sorted list; the input is not modified.
    """
    present = [item for item in items if _sort_value(item, key) is not None]
    missing = [item for item in items if _sort_value(item, key) is None]

    values = [_sort_value(item, key) for item in present]
    numeric = all(_is_number(value) for value in values)

    def sort_key(item: T) -> Any:
        value = _sort_value(item, key)
        if numeric:
            return value
        if isinstance(value, datetime):
            return value.isoformat()
        return str(value)

    ordered = sorted(present, key=sort_key, reverse=direction == SortDirection.DESC)
    return ordered + missing
