"""
Package initialization file for the Ops Copilot models.

This module exports all Pydantic schemas and enumerations from schemas.py and enums.py,
making them importable from ops_copilot.models directly.

Usage:
    from ops_copilot.models import (
        RevenuePoint,
        Anomaly,
        CopilotResponse,
        DataMode,
        FallbackReason,
    )
"""

# =============================================================================
# Enums - Import and re-export all enumerations from enums.py
# =============================================================================

from ops_copilot.models.enums import (
    DataMode,
    DataSource,
    activity_source_tag,
    AnomalyDirection,
    ActivityStatus,
    Priority,
    CopilotMode,
    FallbackReason,
    PromptVersion,
    ModelFailureReason,
    ErrorType,
    SortDirection,
)

# =============================================================================
# Schemas - Import and re-export all Pydantic models from schemas.py
# =============================================================================

from ops_copilot.models.schemas import (
    # Domain records
    RevenuePoint,
    ActivityEvent,
    Anomaly,
    ForecastPoint,
    # Copilot contract
    RecommendedAction,
    CopilotAnswer,
    CopilotMeta,
    CopilotResponse,
    # Analytics responses
    KpiDeltas,
    Kpis,
    RevenueResponse,
    ForecastResponse,
    AnomaliesResponse,
    ActivityPage,
    HealthMetrics,
    ErrorResponse,
)


__all__ = [
    # Enums
    'DataMode',
    'DataSource',
    'activity_source_tag',
    'AnomalyDirection',
    'ActivityStatus',
    'Priority',
    'CopilotMode',
    'FallbackReason',
    'PromptVersion',
    'ModelFailureReason',
    'ErrorType',
    'SortDirection',
    # Domain records
    'RevenuePoint',
    'ActivityEvent',
    'Anomaly',
    'ForecastPoint',
    # Copilot contract
    'RecommendedAction',
    'CopilotAnswer',
    'CopilotMeta',
    'CopilotResponse',
    # Analytics responses
    'KpiDeltas',
    'Kpis',
    'RevenueResponse',
    'ForecastResponse',
    'AnomaliesResponse',
    'ActivityPage',
    'HealthMetrics',
    'ErrorResponse',
]
