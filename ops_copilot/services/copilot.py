"""
Copilot request orchestration.

CopilotOrchestrator.handle() runs one copilot request through its states:

    AUTH -> RATE_LIMIT -> PARSE -> COMPUTE_CONTEXT
         -> DEMO_FALLBACK                                   (no model backend)
         -> MODEL_CALL -> VALIDATE [-> RETRY_STRICT -> VALIDATE]
                       -> SUCCESS | SCHEMA_FALLBACK | ERROR_FALLBACK
         -> RESPOND

AUTH, RATE_LIMIT and PARSE reject with 4xx. Once the context is computed the
request always gets a 200 with a contract-valid answer: the model's when it
validates, a deterministic one otherwise. meta.fallback_reason and the
x-copilot-fallback header tell the two apart.

The orchestrator returns a CopilotOutcome rather than an HTTP response; the
route turns it into a JSONResponse and copies its audit fields onto
request.state for the request log middleware.
"""

import hmac
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ops_copilot.core.config import Settings
from ops_copilot.models import (
    Anomaly,
    CopilotMeta,
    CopilotMode,
    CopilotResponse,
    ErrorType,
    FallbackReason,
    ForecastPoint,
    PromptVersion,
    RevenuePoint,
)
from ops_copilot.services.anomalies import DEFAULT_WINDOW, DEFAULT_Z_THRESHOLD, detect_anomalies
from ops_copilot.services.data_sources import AnalyticsDataProvider
from ops_copilot.services.fallback import (
    PROMPT_VERSION_PREFIX,
    ContextSummary,
    DataContext,
    compute_activity_stats,
    synthesize_copilot_response,
)
from ops_copilot.services.forecast import DEFAULT_FORECAST_DAYS, build_forecast
from ops_copilot.services.model_client import CopilotModelClient, ModelBackendError, load_prompt
from ops_copilot.services.rate_limit import RateLimiter
from ops_copilot.services.schema_validation import validate_copilot_response


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAX_QUERY_LENGTH: int = 600

MAX_EXTRA_DATA_POINTS: int = 12
MAX_DATA_POINT_LENGTH: int = 240

MAX_ANOMALY_DATA_POINTS: int = 4

COPILOT_DEMO_ACTIVITY_COUNT: int = 120

SERIES_DAYS: int = 30

COMPLEX_QUERY_LENGTH: int = 120
COMPLEX_QUERY_KEYWORDS: tuple = (
    "why",
    "root cause",
    "cause",
    "action plan",
    "what should",
    "recommend",
    "anomal",
)

STRICT_RETRY_INSTRUCTION: str = (
    "Return ONLY valid JSON that matches the schema exactly. Do not add keys. "
    "Ensure key_drivers and recommended_actions have the required item counts."
)

_WHITESPACE = re.compile(r"\s+")


# =============================================================================
# Outcome Types
# =============================================================================


class CopilotRequestError(Exception):
    """A copilot request rejected before any analytics ran."""

    def __init__(
        self,
        status_code: int,
        error_type: ErrorType,
        message: str,
        headers: Optional[Dict[str, str]] = None,
        prompt_version: PromptVersion = PromptVersion.V1,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type
        self.message = message
        self.headers = headers or {}
        self.prompt_version = prompt_version


@dataclass
class CopilotOutcome:
    """
    Everything the route needs to respond and to audit the request.

    body is either a serialized CopilotResponse or {"error": ...}.
    """
    status_code: int
    body: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)
    error_type: Optional[ErrorType] = None
    model_used: Optional[str] = None
    prompt_version: PromptVersion = PromptVersion.V1
    schema_pass: Optional[bool] = None


@dataclass(frozen=True)
class CopilotQuery:
    query: str
    prompt_version: PromptVersion
    extra_data_points: List[str]


# =============================================================================
# Request Helpers
# =============================================================================


def is_complex_query(query: str) -> bool:
    """Diagnostic or long questions go to the quality model tier."""
    lowered = query.lower()
    return len(query) > COMPLEX_QUERY_LENGTH or any(
        keyword in lowered for keyword in COMPLEX_QUERY_KEYWORDS
    )


def normalize_extra_data_points(raw: Any) -> List[str]:
    """
    Clean client-supplied data points.

    Non-strings are dropped, whitespace runs collapse to one space, blanks are
    dropped, at most 12 are kept and each is truncated to 240 characters.
    """
    if not isinstance(raw, list):
        return []

    cleaned = [_WHITESPACE.sub(" ", point).strip() for point in raw if isinstance(point, str)]
    cleaned = [point for point in cleaned if point][:MAX_EXTRA_DATA_POINTS]

    return [
        f"{point[:MAX_DATA_POINT_LENGTH - 3]}…" if len(point) > MAX_DATA_POINT_LENGTH else point
        for point in cleaned
    ]


def parse_copilot_body(raw_body: bytes) -> CopilotQuery:
    """
    Decode and check a copilot request body.

    Raises:
        CopilotRequestError: invalid_json, empty_query or query_too_long (400).
    """
    try:
        payload = json.loads(raw_body or b"")
    except ValueError:
        raise CopilotRequestError(400, ErrorType.INVALID_JSON, "Invalid JSON body.")

    if not isinstance(payload, dict):
        raise CopilotRequestError(400, ErrorType.INVALID_JSON, "Invalid JSON body.")

    prompt_version = PromptVersion.V2 if payload.get("prompt_version") == "v2" else PromptVersion.V1

    query = payload.get("query")
    query = query.strip() if isinstance(query, str) else ""

    if not query:
        raise CopilotRequestError(
            400, ErrorType.EMPTY_QUERY, "Query is required.", prompt_version=prompt_version
        )

    if len(query) > MAX_QUERY_LENGTH:
        raise CopilotRequestError(
            400,
            ErrorType.QUERY_TOO_LONG,
            f"Query too long (max {MAX_QUERY_LENGTH} characters).",
            prompt_version=prompt_version,
        )

    return CopilotQuery(
        query=query,
        prompt_version=prompt_version,
        extra_data_points=normalize_extra_data_points(payload.get("extra_data_points")),
    )


# =============================================================================
# Analytics Context
# =============================================================================


def _pct_change(current: float, previous: float) -> float:
    return (current - previous) / previous if previous else 0.0


def build_data_context(
    series: Sequence[RevenuePoint],
    forecast: Sequence[ForecastPoint],
    anomalies: Sequence[Anomaly],
    prompt_version: PromptVersion,
    extra_data_points: Sequence[str] = (),
) -> DataContext:
    """
    Summarize the analytics into citeable data points.

    Client-supplied extra_data_points (already normalized) come first, followed
    by the latest day, the two weekly totals, the week-over-week change, the
    top anomaly, up to four anomalies, the forecast, and the prompt_version
    marker.
    """
    revenues = [p.revenue for p in series]
    last_7_total = sum(revenues[-7:])
    prev_7_total = sum(revenues[-14:-7])
    week_change = _pct_change(last_7_total, prev_7_total)

    last = series[-1] if series else None
    top = anomalies[0] if anomalies else None

    points: List[str] = []
    if last is not None:
        points.append(f"Latest date: {last.date.isoformat()} revenue {last.revenue}")
    points.extend(
        [
            f"Last 7 days total revenue: {last_7_total}",
            f"Previous 7 days total revenue: {prev_7_total}",
            f"Week-over-week change: {week_change * 100:.1f}%",
        ]
    )

    if top is not None:
        points.append(
            f"Top anomaly: {top.date.isoformat()} revenue {top.revenue} "
            f"(z={top.z:.2f}, baseline {top.baseline_avg})"
        )

    for index, anomaly in enumerate(anomalies[:MAX_ANOMALY_DATA_POINTS], start=1):
        points.append(
            f"Anomaly {index}: {anomaly.date.isoformat()} revenue {anomaly.revenue} "
            f"(z={anomaly.z:.2f})"
        )

    forecast_summary = ", ".join(
        f"{p.date.isoformat()}: {p.revenue}" for p in forecast[:DEFAULT_FORECAST_DAYS]
    )
    points.append(f"{DEFAULT_FORECAST_DAYS}-day forecast: {forecast_summary}")
    points.append(f"{PROMPT_VERSION_PREFIX} {prompt_version.value}")

    summary = ContextSummary(
        last_date=last.date.isoformat() if last is not None else None,
        last_revenue=last.revenue if last is not None else None,
        week_over_week=week_change,
        top_anomaly=(
            {
                "date": top.date.isoformat(),
                "revenue": top.revenue,
                "z": top.z,
                "direction": top.direction.value,
            }
            if top is not None
            else None
        ),
    )

    return DataContext(data_points=[*extra_data_points, *points], summary=summary)


# =============================================================================
# Orchestrator
# =============================================================================


class CopilotOrchestrator:
    """
    Run copilot requests against shared process state.

    Args:
        settings: Application settings.
        rate_limiter: Shared fixed-window limiter.
        data_provider: Revenue/activity source for the current data mode.
        model_client: Model backend; None means demo mode.
    """

    def __init__(
        self,
        settings: Settings,
        rate_limiter: RateLimiter,
        data_provider: AnalyticsDataProvider,
        model_client: Optional[CopilotModelClient] = None,
    ) -> None:
        self.settings = settings
        self.rate_limiter = rate_limiter
        self.data_provider = data_provider
        self.model_client = model_client

    def select_model(self, query: str) -> str:
        if is_complex_query(query):
            return self.settings.copilot_model_quality
        return self.settings.copilot_model_cheap

    def _authorize(self, credential: Optional[str]) -> None:
        expected = self.settings.copilot_api_key.encode("utf-8")
        provided = (credential or "").encode("utf-8")
        if not hmac.compare_digest(provided, expected):
            raise CopilotRequestError(401, ErrorType.UNAUTHORIZED, "Invalid x-api-key.")

    def _check_rate(self, client_ip: str) -> None:
        result = self.rate_limiter.check(
            f"copilot:{client_ip}",
            limit=self.settings.copilot_rate_limit,
            window_ms=self.settings.copilot_rate_window_ms,
        )
        if not result.allowed:
            raise CopilotRequestError(
                429,
                ErrorType.RATE_LIMITED,
                "Rate limit exceeded. Try again soon.",
                headers={"x-ratelimit-reset": str(result.reset_at_ms)},
            )

    async def handle(
        self,
        credential: Optional[str],
        client_ip: str,
        raw_body: bytes,
    ) -> CopilotOutcome:
        """
        Process one copilot request.

        Args:
            credential: Value of the x-api-key header.
            client_ip: Client identity used as the rate-limit key.
            raw_body: Undecoded request body.

        Returns:
            CopilotOutcome; never raises.
        """
        prompt_version = PromptVersion.V1
        try:
            self._authorize(credential)
            self._check_rate(client_ip)
            request = parse_copilot_body(raw_body)
            prompt_version = request.prompt_version
            return await self._answer(request)
        except CopilotRequestError as e:
            return CopilotOutcome(
                status_code=e.status_code,
                body={"error": e.message},
                headers=e.headers,
                error_type=e.error_type,
                prompt_version=e.prompt_version,
            )
        except Exception:
            logger.error("Copilot request failed", exc_info=True)
            return CopilotOutcome(
                status_code=500,
                body={"error": "Copilot request failed."},
                error_type=ErrorType.SERVER_ERROR,
                prompt_version=prompt_version,
            )

    async def _answer(self, request: CopilotQuery) -> CopilotOutcome:
        series, _ = await self.data_provider.get_revenue_series(days=SERIES_DAYS)
        forecast = build_forecast(series, days=DEFAULT_FORECAST_DAYS)
        anomalies = detect_anomalies(series, window=DEFAULT_WINDOW, z_threshold=DEFAULT_Z_THRESHOLD)

        activity_rows, _ = await self.data_provider.get_activity_rows(
            demo_count=COPILOT_DEMO_ACTIVITY_COUNT
        )
        activity_stats = compute_activity_stats(activity_rows)

        context = build_data_context(
            series,
            forecast,
            anomalies,
            request.prompt_version,
            request.extra_data_points,
        )

        def fallback(reason: FallbackReason) -> CopilotResponse:
            return synthesize_copilot_response(
                context=context,
                anomalies=anomalies,
                activity_stats=activity_stats,
                model_enabled=self.model_client is not None,
                prompt_version=request.prompt_version,
                fallback_reason=reason,
            )

        headers = {"x-prompt-version": request.prompt_version.value}

        if self.model_client is None:
            headers.update(
                {
                    "x-openai-mode": CopilotMode.DEMO.value,
                    "x-copilot-fallback": FallbackReason.DEMO_MODE.value,
                }
            )
            return CopilotOutcome(
                status_code=200,
                body=fallback(FallbackReason.DEMO_MODE).model_dump(mode="json"),
                headers=headers,
                error_type=ErrorType.DEMO_MODE,
                prompt_version=request.prompt_version,
                schema_pass=True,
            )

        model = self.select_model(request.query)
        headers.update({"x-openai-mode": CopilotMode.LIVE.value, "x-model-used": model})

        async def call(system_prompt: str, extra_instruction: Optional[str] = None) -> Dict[str, Any]:
            return await self.model_client.generate(
                model=model,
                system_prompt=system_prompt,
                query=request.query,
                data_points=context.data_points,
                max_output_tokens=self.settings.copilot_max_output_tokens,
                extra_instruction=extra_instruction,
            )

        try:
            system_prompt = load_prompt(request.prompt_version)
            validation = validate_copilot_response(await call(system_prompt))
            if not validation.ok:
                logger.info(f"Model answer failed validation, retrying strict: {validation.error}")
                validation = validate_copilot_response(
                    await call(system_prompt, STRICT_RETRY_INSTRUCTION)
                )
        except (ModelBackendError, OSError) as e:
            logger.warning(f"Model backend error ({model}): {e}")
            headers["x-copilot-fallback"] = FallbackReason.OPENAI_ERROR.value
            return CopilotOutcome(
                status_code=200,
                body=fallback(FallbackReason.OPENAI_ERROR).model_dump(mode="json"),
                headers=headers,
                error_type=ErrorType.OPENAI_ERROR,
                model_used=model,
                prompt_version=request.prompt_version,
                schema_pass=True,
            )

        if not validation.ok:
            logger.warning(f"Model answer invalid after strict retry ({model}): {validation.error}")
            headers["x-copilot-fallback"] = FallbackReason.SCHEMA_INVALID.value
            return CopilotOutcome(
                status_code=200,
                body=fallback(FallbackReason.SCHEMA_INVALID).model_dump(mode="json"),
                headers=headers,
                error_type=ErrorType.SCHEMA_INVALID,
                model_used=model,
                prompt_version=request.prompt_version,
                schema_pass=False,
            )

        answer = CopilotResponse(
            **validation.data.model_dump(),
            meta=CopilotMeta(
                mode=CopilotMode.LIVE,
                fallback_reason=FallbackReason.NONE,
                prompt_version=request.prompt_version,
            ),
        )
        headers["x-copilot-fallback"] = FallbackReason.NONE.value
        return CopilotOutcome(
            status_code=200,
            body=answer.model_dump(mode="json"),
            headers=headers,
            model_used=model,
            prompt_version=request.prompt_version,
            schema_pass=True,
        )
