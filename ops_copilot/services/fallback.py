"""
Deterministic copilot answers.

When no model backend is configured, the backend fails, or its output is
rejected twice, the copilot still answers: synthesize_copilot_response() turns
the same analytics context the model would have seen into a contract-valid
CopilotResponse. The result depends only on its inputs.

Confidence stays inside [0.25, 0.65] so a fallback never claims the certainty
of a reviewed model answer.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from ops_copilot.models import (
    ActivityEvent,
    ActivityStatus,
    Anomaly,
    AnomalyDirection,
    CopilotMeta,
    CopilotMode,
    CopilotResponse,
    FallbackReason,
    Priority,
    PromptVersion,
    RecommendedAction,
)
from ops_copilot.services.stats import clamp


# =============================================================================
# Constants
# =============================================================================

ACTIVITY_WINDOW_DAYS: int = 30

PROMPT_VERSION_PREFIX: str = "prompt_version:"

MAX_USED_DATA_POINTS: int = 12

MAX_DRIVERS: int = 6
MAX_ACTIONS: int = 6
MIN_ITEMS: int = 3

CONFIDENCE_BASE_LIVE: float = 0.42
CONFIDENCE_BASE_DEMO: float = 0.34
CONFIDENCE_MIN: float = 0.25
CONFIDENCE_MAX: float = 0.65

PENDING_RATIO_ALERT: float = 0.25
WOW_DECLINE_ALERT: float = -0.03

DEMO_NOTICE: str = "Demo Copilot mode (no model key)."


# =============================================================================
# Context Types
# =============================================================================


@dataclass
class ContextSummary:
    """Machine-readable headline numbers extracted from the revenue series."""
    last_date: Optional[str] = None
    last_revenue: Optional[int] = None
    week_over_week: float = 0.0
    top_anomaly: Optional[Dict[str, Any]] = None


@dataclass
class DataContext:
    """
    The analytics bundle handed to the model (and to the fallback).

    data_points are the human-readable lines the model is told to cite;
    summary carries the same facts as numbers.
    """
    data_points: List[str] = field(default_factory=list)
    summary: ContextSummary = field(default_factory=ContextSummary)


@dataclass(frozen=True)
class ActivityStats:
    total_30d: int
    completed_30d: int
    pending_30d: int
    completion_rate: Optional[float]


# =============================================================================
# Activity Statistics
# =============================================================================


def compute_activity_stats(
    rows: Optional[Sequence[ActivityEvent]],
    now: Optional[datetime] = None,
) -> ActivityStats:
    """
    Count completed and pending activity over the trailing 30 days.

    Args:
        rows: Activity events; None is treated as no rows.
        now: Reference time; defaults to the current UTC time.

    Returns:
        ActivityStats; completion_rate is None when there are no recent rows.
    """
    reference = now or datetime.now(timezone.utc)
    cutoff = reference - timedelta(days=ACTIVITY_WINDOW_DAYS)

    recent = [row for row in (rows or []) if row.timestamp >= cutoff]
    total = len(recent)
    completed = sum(1 for row in recent if row.status == ActivityStatus.COMPLETED)

    return ActivityStats(
        total_30d=total,
        completed_30d=completed,
        pending_30d=total - completed,
        completion_rate=completed / total if total else None,
    )


# =============================================================================
# Synthesis
# =============================================================================


def _finite_or_zero(value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        return float(value)
    return 0.0


def _pct(value: float, digits: int = 1) -> str:
    return f"{value * 100:.{digits}f}"


def pick_used_data_points(
    data_points: Sequence[str],
    prompt_version: PromptVersion,
    max_items: int = MAX_USED_DATA_POINTS,
) -> List[str]:
    """
    Select the data points a fallback answer cites.

    Keeps the first max_items non-empty points. The prompt_version marker is
    always present: appended when there is room, otherwise it replaces the
    last selected point.
    """
    points = [point for point in data_points if point]
    selected = points[:max_items]

    marker = next((p for p in points if p.startswith(PROMPT_VERSION_PREFIX)), None)
    if marker is None:
        marker = f"{PROMPT_VERSION_PREFIX} {prompt_version.value}"

    if marker not in selected:
        if len(selected) < max_items:
            selected.append(marker)
        else:
            selected[-1] = marker

    return selected


def _build_summary(
    model_enabled: bool,
    week_change: float,
    total_anomalies: int,
    down_anomalies: int,
    stats: ActivityStats,
) -> str:
    parts: List[str] = []
    if not model_enabled:
        parts.append(DEMO_NOTICE)

    parts.append(f"Week-over-week revenue is {_pct(week_change)}%.")

    noun = "anomaly" if total_anomalies == 1 else "anomalies"
    parts.append(
        f"Detected {total_anomalies} {noun} "
        f"({down_anomalies} down, {total_anomalies - down_anomalies} up)."
    )

    if stats.total_30d:
        rate = _pct(stats.completion_rate, 0) if stats.completion_rate is not None else "—"
        parts.append(
            f"Activity shows {rate}% completed and {stats.pending_30d} pending items "
            f"over the last {ACTIVITY_WINDOW_DAYS} days."
        )
    else:
        parts.append("Activity status ratios are unavailable for this run.")

    return " ".join(parts[:3])


def _build_drivers(
    week_change: float,
    anomalies: Sequence[Anomaly],
    down_anomalies: int,
    stats: ActivityStats,
    pending_ratio: Optional[float],
) -> List[str]:
    total = len(anomalies)
    drivers = [
        f"Week-over-week change: {_pct(week_change)}% (last 7 days vs previous 7).",
        f"Anomalies flagged: {total} total (down: {down_anomalies}, up: {total - down_anomalies}).",
    ]

    if anomalies:
        top = anomalies[0]
        drivers.append(f"Top anomaly: {top.date.isoformat()} z={top.z:.2f} ({top.direction.value}).")

    if stats.total_30d:
        drivers.append(
            f"Activity completion ({ACTIVITY_WINDOW_DAYS}d): {stats.completed_30d} completed "
            f"/ {stats.pending_30d} pending."
        )

    if pending_ratio is not None and pending_ratio > PENDING_RATIO_ALERT:
        drivers.append("Pending activity volume is elevated, increasing operational risk.")

    backfill = [
        "Forecast and anomaly signals were used to generate recommendations.",
        "Activity status ratios were incorporated when available.",
    ]
    for line in backfill:
        if len(drivers) >= MIN_ITEMS:
            break
        drivers.append(line)

    return drivers[:MAX_DRIVERS]


def _build_actions(
    week_change: float,
    down_anomalies: int,
    pending_ratio: Optional[float],
) -> List[RecommendedAction]:
    actions: List[RecommendedAction] = []

    if week_change < WOW_DECLINE_ALERT or down_anomalies > 0:
        actions.append(
            RecommendedAction(
                action="Audit channel health and menu availability on key partners",
                reason=(
                    "Negative anomalies and a revenue dip often correlate with outages, "
                    "hours/menu drift, or fulfillment constraints on delivery platforms."
                ),
                priority=Priority.HIGH,
            )
        )

    if pending_ratio is not None and pending_ratio > PENDING_RATIO_ALERT:
        actions.append(
            RecommendedAction(
                action="Clear the highest-impact pending operational items",
                reason=(
                    "A high pending ratio suggests backlog in refunds, hours updates, promos, "
                    "or partner tasks that can suppress demand and SLA performance."
                ),
                priority=Priority.HIGH,
            )
        )

    actions.append(
        RecommendedAction(
            action="Review anomaly dates against promos, staffing, and partner incidents",
            reason=(
                "Use anomaly timestamps to triage what changed and validate whether the "
                "underlying driver is known and repeatable."
            ),
            priority=Priority.MEDIUM,
        )
    )
    actions.append(
        RecommendedAction(
            action="Set a daily check for order flow and cancellation rate",
            reason=(
                "A lightweight daily check catches revenue-impacting issues (pricing, outages, "
                "SLA drift) before they become multi-day dips."
            ),
            priority=Priority.MEDIUM,
        )
    )

    if len(actions) < MIN_ITEMS:
        actions.append(
            RecommendedAction(
                action="Confirm staffing and catering capacity aligns with demand signals",
                reason=(
                    "Even without a staffing system, aligning shifts and prep plans with "
                    "forecast direction reduces SLA misses and missed revenue."
                ),
                priority=Priority.MEDIUM,
            )
        )

    return actions[:MAX_ACTIONS]


def _activity_data_point(stats: ActivityStats) -> str:
    rate = _pct(stats.completion_rate) if stats.completion_rate is not None else "—"
    return (
        f"Activity ({ACTIVITY_WINDOW_DAYS}d): total {stats.total_30d}, "
        f"completed {stats.completed_30d}, pending {stats.pending_30d}, "
        f"completion_rate {rate}%"
    )


def synthesize_copilot_response(
    context: DataContext,
    anomalies: Sequence[Anomaly],
    activity_stats: Optional[ActivityStats],
    model_enabled: bool,
    prompt_version: PromptVersion,
    fallback_reason: FallbackReason,
) -> CopilotResponse:
    """
    Build a contract-valid copilot answer from analytics alone.

    Args:
        context: Data points and summary numbers for this request.
        anomalies: Detected anomalies, most significant first.
        activity_stats: Trailing 30-day activity counts (None if unknown).
        model_enabled: Whether a model backend is configured.
        prompt_version: Prompt version requested by the client.
        fallback_reason: Why no model answer is being returned.

    Returns:
        CopilotResponse with meta.mode live when a model is configured (even
        though this answer did not come from it) and demo otherwise.
    """
    stats = activity_stats or ActivityStats(0, 0, 0, None)

    week_change = _finite_or_zero(context.summary.week_over_week)
    down_anomalies = sum(1 for a in anomalies if a.direction == AnomalyDirection.DOWN)
    pending_ratio = stats.pending_30d / stats.total_30d if stats.total_30d else None

    confidence = CONFIDENCE_BASE_LIVE if model_enabled else CONFIDENCE_BASE_DEMO
    if anomalies:
        confidence += 0.06
    if stats.total_30d:
        confidence += 0.05
    if pending_ratio is not None and pending_ratio > PENDING_RATIO_ALERT:
        confidence += 0.04
    confidence = round(clamp(confidence, CONFIDENCE_MIN, CONFIDENCE_MAX), 4)

    used_data_points = pick_used_data_points(
        [_activity_data_point(stats), *context.data_points],
        prompt_version,
    )

    return CopilotResponse(
        summary=_build_summary(model_enabled, week_change, len(anomalies), down_anomalies, stats),
        key_drivers=_build_drivers(week_change, anomalies, down_anomalies, stats, pending_ratio),
        recommended_actions=_build_actions(week_change, down_anomalies, pending_ratio),
        confidence=confidence,
        used_data_points=used_data_points,
        meta=CopilotMeta(
            mode=CopilotMode.LIVE if model_enabled else CopilotMode.DEMO,
            fallback_reason=fallback_reason,
            prompt_version=prompt_version,
        ),
    )
