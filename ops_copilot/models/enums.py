"""
Enumeration definitions for the Ops Copilot backend.

All enums inherit from both `str` and `Enum` to ensure JSON serialization compatibility
with Pydantic models, enabling automatic serialization/deserialization in API responses.
"""

from enum import Enum


class DataMode(str, Enum):
    """
    Configuration axis selecting where analytics data comes from.

    - demo: Deterministic synthetic revenue and activity
    - mixed: Synthetic revenue, live activity feed
    - live: Revenue derived from the live activity feed
    """
    DEMO = "demo"
    MIXED = "mixed"
    LIVE = "live"


class DataSource(str, Enum):
    """
    Provenance tag attached to analytics responses.

    The cache tags mirror the activity cache state machine; revenue derived
    from the feed is reported as ``activity_<cache tag>`` (see
    ``activity_source_tag``).
    """
    DEMO = "demo"
    DEMO_FALLBACK = "demo_fallback"
    FETCHED = "fetched"
    MEMORY_CACHE = "memory_cache"
    DISK_CACHE_FRESH = "disk_cache_fresh"
    DISK_CACHE_STALE = "disk_cache_stale"
    UNAVAILABLE = "unavailable"


def activity_source_tag(source: DataSource) -> str:
    """Provenance tag for a revenue series derived from activity rows."""
    return f"activity_{source.value}"


class AnomalyDirection(str, Enum):
    UP = "up"
    DOWN = "down"


class ActivityStatus(str, Enum):
    COMPLETED = "Completed"
    PENDING = "Pending"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CopilotMode(str, Enum):
    """
    Whether a model backend is configured for the copilot.

    A live-mode response can still be a fallback; see FallbackReason.
    """
    LIVE = "live"
    DEMO = "demo"


class FallbackReason(str, Enum):
    """
    Why a deterministic response was returned instead of a model answer.

    - none: The model answer passed validation
    - demo_mode: No model backend is configured
    - openai_error: The backend call failed or returned an unparsable payload
    - schema_invalid: The model answer failed validation, including the strict retry
    """
    NONE = "none"
    DEMO_MODE = "demo_mode"
    OPENAI_ERROR = "openai_error"
    SCHEMA_INVALID = "schema_invalid"


class PromptVersion(str, Enum):
    V1 = "v1"
    V2 = "v2"


class ModelFailureReason(str, Enum):
    """
    Enumerated failure reasons for the model backend adapter.

    - request_failed: Transport error, timeout, or API error response
    - empty_response: No known response location carried content
    - invalid_json: Text output was not valid JSON
    - not_an_object: JSON output was not an object
    """
    REQUEST_FAILED = "request_failed"
    EMPTY_RESPONSE = "empty_response"
    INVALID_JSON = "invalid_json"
    NOT_AN_OBJECT = "not_an_object"


class ErrorType(str, Enum):
    """Error type tags recorded in the request audit log."""
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    INVALID_JSON = "invalid_json"
    EMPTY_QUERY = "empty_query"
    QUERY_TOO_LONG = "query_too_long"
    INVALID_SORT = "invalid_sort"
    DEMO_MODE = "demo_mode"
    OPENAI_ERROR = "openai_error"
    SCHEMA_INVALID = "schema_invalid"
    SERVER_ERROR = "server_error"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"
