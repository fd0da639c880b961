"""
FastAPI router for GET /api/metrics: rolling 24h service health.
"""

import logging

from fastapi import APIRouter, Request

from ops_copilot.api.analytics import reject
from ops_copilot.core.dependencies import RequestLogDep, SettingsDep
from ops_copilot.models import ErrorType, HealthMetrics
from ops_copilot.services.request_log import HEALTH_WINDOW_MS, now_ms, summarize_health


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["metrics"])


@router.get("/metrics", response_model=HealthMetrics)
async def get_metrics(
    request: Request,
    store: RequestLogDep,
    settings: SettingsDep,
) -> HealthMetrics:
    """
    Latency, error and copilot schema-pass metrics over the last 24 hours.

    The request being served is not yet in the log, so it is not counted.
    """
    try:
        entries = await store.entries_since(now_ms() - HEALTH_WINDOW_MS)
        return summarize_health(entries, settings)
    except Exception:
        logger.exception("Error computing health metrics")
        reject(request, 500, ErrorType.SERVER_ERROR, "Failed to compute metrics.")
