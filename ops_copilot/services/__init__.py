"""
Ops Copilot Services

Business logic behind the API layer. Each module has a single responsibility;
shared process state (rate-limit table, activity cache, audit log) lives in
explicit objects created by the application lifespan, never in module globals.

Services:
- stats: numpy-backed mean / population std / rounding helpers
- anomalies: rolling z-score anomaly detection
- forecast: linear short-horizon revenue forecast
- schema_validation: the copilot answer contract gate
- rate_limit: fixed-window per-client limiter
- live_activity: upstream activity feed cache (memory + disk, stale-if-error)
- demo_data: deterministic demo revenue and activity
- data_sources: data-mode aware revenue/activity provider, record sorting
- fallback: deterministic contract-valid copilot answers
- model_client: OpenAI Responses API adapter
- copilot: copilot request orchestration
- request_log: audit log stores and 24h health metrics
"""

from ops_copilot.services.anomalies import detect_anomalies
from ops_copilot.services.forecast import build_forecast
from ops_copilot.services.schema_validation import (
    COPILOT_JSON_SCHEMA,
    CopilotValidation,
    validate_copilot_response,
)
from ops_copilot.services.rate_limit import RateLimiter, RateLimitResult, client_identity
from ops_copilot.services.live_activity import (
    ActivityCache,
    ActivityCacheResult,
    derive_revenue_series_from_activity,
    map_upstream_item,
)
from ops_copilot.services.data_sources import AnalyticsDataProvider, sort_by_key
from ops_copilot.services.fallback import (
    ActivityStats,
    DataContext,
    compute_activity_stats,
    synthesize_copilot_response,
)
from ops_copilot.services.model_client import (
    ModelBackendError,
    ModelOutput,
    OpenAICopilotClient,
    parse_model_output,
)
from ops_copilot.services.copilot import (
    CopilotOrchestrator,
    CopilotOutcome,
    CopilotRequestError,
    build_data_context,
)
from ops_copilot.services.request_log import (
    ApiLogEntry,
    InMemoryRequestLogStore,
    PostgresRequestLogStore,
    summarize_health,
)


__all__ = [
    "detect_anomalies",
    "build_forecast",
    "COPILOT_JSON_SCHEMA",
    "CopilotValidation",
    "validate_copilot_response",
    "RateLimiter",
    "RateLimitResult",
    "client_identity",
    "ActivityCache",
    "ActivityCacheResult",
    "derive_revenue_series_from_activity",
    "map_upstream_item",
    "AnalyticsDataProvider",
    "sort_by_key",
    "ActivityStats",
    "DataContext",
    "compute_activity_stats",
    "synthesize_copilot_response",
    "ModelBackendError",
    "ModelOutput",
    "OpenAICopilotClient",
    "parse_model_output",
    "CopilotOrchestrator",
    "CopilotOutcome",
    "CopilotRequestError",
    "build_data_context",
    "ApiLogEntry",
    "InMemoryRequestLogStore",
    "PostgresRequestLogStore",
    "summarize_health",
]
