"""
Pydantic request/response models for the Ops Copilot FastAPI backend.

This module provides type-safe data validation and serialization for all API contracts:
revenue and activity domain records, derived analytics (anomalies, forecast),
the copilot answer contract, and the health metrics block.

The copilot contract is split in two:
- CopilotAnswer: the five fields a model backend must produce. Extra keys are
  forbidden and scalar types are strict, so a candidate either conforms exactly
  or is rejected.
- CopilotResponse: CopilotAnswer plus the response metadata the service adds.

All models use Pydantic v2 syntax with proper field validation and examples.
"""

from datetime import date as DateType, datetime, timezone
from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator

from ops_copilot.models.enums import (
    ActivityStatus,
    AnomalyDirection,
    CopilotMode,
    DataMode,
    FallbackReason,
    Priority,
    PromptVersion,
)


# =============================================================================
# Domain Records
# =============================================================================


class RevenuePoint(BaseModel):
    """
    Daily revenue observation.

    Series are ordered ascending by date with no duplicate dates.
    """
    model_config = ConfigDict(
        json_schema_extra={"example": {"date": "2026-10-18", "revenue": 13250}}
    )

    date: DateType = Field(..., description="Calendar day")
    revenue: int = Field(..., ge=0, description="Revenue for the day")


class ActivityEvent(BaseModel):
    """
    One operational event from the activity feed (or the demo generator).

    Immutable once cached.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "id": "live_12",
                "timestamp": "2026-10-12T07:16:00Z",
                "store": "River North",
                "channel": "Google",
                "action": "Menu sync completed",
                "status": "Completed",
                "revenue_delta": 140,
            }
        },
    )

    id: str = Field(..., description="Unique event id")
    timestamp: datetime = Field(..., description="When the event happened (UTC)")
    store: str
    channel: str
    action: str
    status: ActivityStatus
    revenue_delta: int = Field(..., description="Signed revenue impact")

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        """Offset-less timestamps are read as UTC."""
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Anomaly(BaseModel):
    """Revenue point whose rolling z-score crossed the detection threshold."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "date": "2026-10-10",
                "revenue": 10432,
                "z": -2.87,
                "direction": "down",
                "baseline_avg": 13120,
            }
        }
    )

    date: DateType
    revenue: int
    z: float = Field(..., description="Signed deviation from the baseline mean in std units")
    direction: AnomalyDirection
    baseline_avg: int = Field(..., description="Rounded mean of the baseline window")


class ForecastPoint(BaseModel):
    """Projected revenue for a future calendar day."""

    date: DateType
    revenue: int = Field(..., ge=0)


# =============================================================================
# Copilot Contract
# =============================================================================

NonEmptyStr = Annotated[StrictStr, Field(min_length=1)]


class RecommendedAction(BaseModel):
    model_config = ConfigDict(extra='forbid')

    action: Annotated[StrictStr, Field(min_length=1, max_length=240)]
    reason: Annotated[StrictStr, Field(min_length=1, max_length=600)]
    priority: Priority


class CopilotAnswer(BaseModel):
    """
    The structured answer a model backend must return.

    Every field is required and bounded; no extra keys are permitted. This
    model is the single definition of a usable copilot answer; the model path
    and the deterministic fallback both produce instances of it.
    """
    model_config = ConfigDict(
        extra='forbid',
        json_schema_extra={
            "example": {
                "summary": "Revenue fell 6.2% week over week, led by a sharp dip on 2026-10-10.",
                "key_drivers": [
                    "Week-over-week change: -6.2%",
                    "Top anomaly: 2026-10-10 z=-2.87 (down)",
                    "Pending activity is 31% of the last 30 days",
                ],
                "recommended_actions": [
                    {
                        "action": "Audit channel health on delivery partners",
                        "reason": "Down anomalies often follow outages or menu drift",
                        "priority": "high",
                    }
                ],
                "confidence": 0.72,
                "used_data_points": ["Week-over-week change: -6.2%"],
            }
        },
    )

    summary: Annotated[StrictStr, Field(min_length=1, max_length=1200)]
    key_drivers: List[NonEmptyStr] = Field(..., min_length=3, max_length=6)
    recommended_actions: List[RecommendedAction] = Field(..., min_length=3, max_length=6)
    confidence: float = Field(..., ge=0, le=1, strict=True)
    used_data_points: List[NonEmptyStr] = Field(..., min_length=1, max_length=16)


class CopilotMeta(BaseModel):
    """Response metadata separating real model answers from safe fallbacks."""

    mode: CopilotMode
    fallback_reason: FallbackReason
    prompt_version: PromptVersion


class CopilotResponse(CopilotAnswer):
    """Wire response of the copilot endpoint."""

    meta: CopilotMeta


# =============================================================================
# Analytics Responses
# =============================================================================


class KpiDeltas(BaseModel):
    total_revenue_30d: float
    active_stores: float
    upcoming_catering_orders: float
    on_time_pickup_rate: float


class Kpis(BaseModel):
    """Headline KPI block shown above the revenue chart."""

    total_revenue_30d: int
    active_stores: int
    upcoming_catering_orders: int
    on_time_pickup_rate: float
    deltas: KpiDeltas


class RevenueResponse(BaseModel):
    series: List[RevenuePoint]
    kpis: Kpis
    data_mode: DataMode
    data_source: str


class ForecastResponse(BaseModel):
    forecast: List[ForecastPoint]
    data_mode: DataMode
    data_source: str


class AnomaliesResponse(BaseModel):
    anomalies: List[Anomaly]
    data_mode: DataMode
    data_source: str


class ActivityPage(BaseModel):
    """One page of the sorted activity feed."""
    model_config = ConfigDict(populate_by_name=True)

    rows: List[ActivityEvent]
    page: int
    page_size: int = Field(..., alias="pageSize")
    total: int
    total_pages: int = Field(..., alias="totalPages")
    data_mode: DataMode
    data_source: str


class HealthMetrics(BaseModel):
    """
    Rolling 24h service health computed from the request audit log.

    copilot_schema_pass_rate_24h is None when no copilot request was logged.
    ai_requests_24h duplicates copilot_requests_24h for older dashboard builds.
    """

    p95_latency_ms_24h: float
    error_rate_24h: float
    copilot_requests_24h: int
    copilot_schema_pass_rate_24h: Optional[float] = None
    ai_requests_24h: int
    total_requests_24h: int
    data_mode: DataMode
    data_cache_ttl_seconds: int
    live_activity_url: str
    openai_configured: bool


class ErrorResponse(BaseModel):
    error: str


__all__: List[str] = [
    "RevenuePoint",
    "ActivityEvent",
    "Anomaly",
    "ForecastPoint",
    "RecommendedAction",
    "CopilotAnswer",
    "CopilotMeta",
    "CopilotResponse",
    "KpiDeltas",
    "Kpis",
    "RevenueResponse",
    "ForecastResponse",
    "AnomaliesResponse",
    "ActivityPage",
    "HealthMetrics",
    "ErrorResponse",
]