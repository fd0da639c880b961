"""
FastAPI router for the analytics endpoints.

Implements GET /api/revenue, /api/forecast, /api/anomalies and /api/activity.
Every response carries data_mode (configured) and data_source (where the
numbers actually came from this time, e.g. demo_fallback when the live feed
was down).

Query parameters of /api/activity are parsed leniently: a non-numeric page
means page 1, an unsupported pageSize means 10, any sortDir other than "asc"
means descending. Only an unknown sortBy is rejected (400 invalid_sort).
"""

import logging
import math
from typing import NoReturn, Optional

from fastapi import APIRouter, HTTPException, Query, Request

from ops_copilot.core.dependencies import DataProviderDep, SettingsDep
from ops_copilot.models import (
    ActivityPage,
    AnomaliesResponse,
    ErrorResponse,
    ErrorType,
    ForecastResponse,
    RevenueResponse,
    SortDirection,
)
from ops_copilot.services.anomalies import DEFAULT_WINDOW, DEFAULT_Z_THRESHOLD, detect_anomalies
from ops_copilot.services.data_sources import sort_by_key
from ops_copilot.services.demo_data import get_kpis
from ops_copilot.services.forecast import DEFAULT_FORECAST_DAYS, build_forecast


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["analytics"])


# =============================================================================
# Constants
# =============================================================================

SERIES_DAYS: int = 30

ACTIVITY_DEMO_COUNT: int = 84

PAGE_SIZES = (10, 20, 50)
DEFAULT_PAGE_SIZE: int = 10

SORT_KEYS = frozenset({"timestamp", "store", "channel", "status", "revenue_delta"})


# =============================================================================
# Helpers
# =============================================================================


def reject(request: Request, status_code: int, error_type: ErrorType, message: str) -> NoReturn:
    """Tag the request for the audit log and raise the HTTP error."""
    request.state.error_type = error_type.value
    raise HTTPException(status_code=status_code, detail=message)


def _parse_int(raw: Optional[str], default: int) -> int:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return default


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/revenue", response_model=RevenueResponse)
async def get_revenue(
    request: Request,
    provider: DataProviderDep,
    settings: SettingsDep,
) -> RevenueResponse:
    """30 days of revenue plus the headline KPI block."""
    try:
        series, source = await provider.get_revenue_series(days=SERIES_DAYS)
        return RevenueResponse(
            series=series,
            kpis=get_kpis(series),
            data_mode=settings.data_mode,
            data_source=source,
        )
    except Exception:
        logger.exception("Error generating revenue series")
        reject(request, 500, ErrorType.SERVER_ERROR, "Failed to generate revenue.")


@router.get("/forecast", response_model=ForecastResponse)
async def get_forecast(
    request: Request,
    provider: DataProviderDep,
    settings: SettingsDep,
) -> ForecastResponse:
    """Seven-day forecast extrapolated from the revenue series."""
    try:
        series, source = await provider.get_revenue_series(days=SERIES_DAYS)
        return ForecastResponse(
            forecast=build_forecast(series, days=DEFAULT_FORECAST_DAYS),
            data_mode=settings.data_mode,
            data_source=source,
        )
    except Exception:
        logger.exception("Error generating forecast")
        reject(request, 500, ErrorType.SERVER_ERROR, "Failed to generate forecast.")


@router.get("/anomalies", response_model=AnomaliesResponse)
async def get_anomalies(
    request: Request,
    provider: DataProviderDep,
    settings: SettingsDep,
) -> AnomaliesResponse:
    try:
        series, source = await provider.get_revenue_series(days=SERIES_DAYS)
        return AnomaliesResponse(
            anomalies=detect_anomalies(series, window=DEFAULT_WINDOW, z_threshold=DEFAULT_Z_THRESHOLD),
            data_mode=settings.data_mode,
            data_source=source,
        )
    except Exception:
        logger.exception("Error detecting anomalies")
        reject(request, 500, ErrorType.SERVER_ERROR, "Failed to detect anomalies.")


@router.get(
    "/activity",
    response_model=ActivityPage,
    responses={400: {"model": ErrorResponse}},
)
async def get_activity(
    request: Request,
    provider: DataProviderDep,
    settings: SettingsDep,
    page: Optional[str] = Query(None),
    page_size: Optional[str] = Query(None, alias="pageSize"),
    sort_by: str = Query("timestamp", alias="sortBy"),
    sort_dir: Optional[str] = Query(None, alias="sortDir"),
) -> ActivityPage:
    """
    One page of the activity feed.

    Args:
        page: 1-based page number, clamped to [1, totalPages].
        page_size: 10, 20 or 50; anything else means 10.
        sort_by: timestamp, store, channel, status or revenue_delta.
        sort_dir: asc or desc (default desc).

    Raises:
        HTTPException 400: Unknown sortBy.
    """
    if sort_by not in SORT_KEYS:
        reject(request, 400, ErrorType.INVALID_SORT, "Invalid sortBy parameter.")

    requested_page = max(1, _parse_int(page, 1))
    size = _parse_int(page_size, DEFAULT_PAGE_SIZE)
    size = size if size in PAGE_SIZES else DEFAULT_PAGE_SIZE
    direction = SortDirection.ASC if sort_dir == "asc" else SortDirection.DESC

    try:
        rows, source = await provider.get_activity_rows(demo_count=ACTIVITY_DEMO_COUNT)
        ordered = sort_by_key(rows, sort_by, direction)

        total = len(ordered)
        total_pages = max(1, math.ceil(total / size))
        current = min(requested_page, total_pages)
        start = (current - 1) * size

        return ActivityPage(
            rows=ordered[start:start + size],
            page=current,
            page_size=size,
            total=total,
            total_pages=total_pages,
            data_mode=settings.data_mode,
            data_source=source,
        )
    except Exception:
        logger.exception("Error generating activity page")
        reject(request, 500, ErrorType.SERVER_ERROR, "Failed to generate activity.")
