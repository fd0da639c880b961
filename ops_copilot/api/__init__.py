"""
API package initialization.

Router modules:
- analytics: revenue, forecast, anomalies, activity feed
- copilot: the structured-answer copilot endpoint
- metrics: rolling 24h service health
"""

from fastapi import APIRouter

from ops_copilot.api.analytics import router as analytics_router
from ops_copilot.api.copilot import router as copilot_router
from ops_copilot.api.metrics import router as metrics_router

api_router = APIRouter()

api_router.include_router(analytics_router)
api_router.include_router(copilot_router)
api_router.include_router(metrics_router)

__all__ = [
    "api_router",
    "analytics_router",
    "copilot_router",
    "metrics_router",
]
