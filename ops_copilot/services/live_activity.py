"""
Upstream Activity Cache.

TTL cache around a third-party activity feed with an in-process memory slot, a
durable on-disk mirror, and stale-if-error fallback.

State Machine (per get_activity_rows call):
    1. memory_cache:      memory slot populated and now < expires_at
    2. disk_cache_fresh:  disk mirror within ttl of its own fetch time;
                          adopted into memory
    3. fetched:           bounded-timeout refresh from upstream succeeded;
                          rows persisted to memory and disk
    4. disk_cache_stale:  refresh failed but a disk mirror exists (even
                          expired); memory expiry shortened to min(ttl, 60s)
                          so the next retry happens soon
    5. unavailable:       refresh failed and there is no mirror; rows=None.
                          Callers fall back to demo data, never fail.

Cache Entry Lifecycle:
    Entries are replaced wholesale on every successful fetch, never merged.
    The disk mirror is a single JSON document {fetchedAtMs, rows}, written to
    a temporary file and swapped in with os.replace(). A missing, unreadable,
    or corrupt file is "no mirror".

Concurrency:
    The slot is plain shared state without locking. Concurrent misses may each
    refresh upstream; the last writer wins. Refreshes are idempotent, so the
    slot converges.

Upstream Mapping:
    Feed items ({id, userId, title, completed}) are mapped deterministically to
    ActivityEvent rows. The only pseudo-randomness is a revenue delta seeded by
    the item's identity.

Usage:
    cache = ActivityCache(cache_dir="data", url=settings.live_activity_url)
    result = await cache.get_activity_rows(ttl_ms=300_000, max_items=220)
    if result.rows is None:
        ...  # use demo rows
"""

import json
import logging
import math
import os
import tempfile
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import httpx
import pandas as pd
from pydantic import ValidationError

from ops_copilot.models import ActivityEvent, ActivityStatus, DataSource, RevenuePoint
from ops_copilot.services.demo_data import CHANNELS, STORES
from ops_copilot.services.stats import clamp, round_half_up


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

CACHE_FILENAME: str = "live_activity_cache.json"

DEFAULT_TTL_MS: int = 5 * 60 * 1000

# Upper bound on the shortened memory expiry after a failed refresh
STALE_RETRY_MS: int = 60 * 1000

DEFAULT_TIMEOUT_SECONDS: float = 7.5

# Revenue derivation from activity rows
REVENUE_BASELINE: int = 10500
REVENUE_LIFT_PER_EVENT: int = 55
REVENUE_MIN: int = 6500
REVENUE_MAX: int = 26000


def _now_ms() -> int:
    return int(time.time() * 1000)


def _ms_to_datetime(epoch_ms: int) -> datetime:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)


def _to_int(value: Any) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return int(number)


# =============================================================================
# Upstream Item Mapping
# =============================================================================


def seeded_number(seed: int) -> float:
    """Deterministic pseudo-random value in [0, 1) for an integer seed."""
    x = math.sin(seed) * 10000
    return x - math.floor(x)


def map_upstream_item(item: Any, anchor_ms: int) -> ActivityEvent:
    """
    Map one upstream feed item to an ActivityEvent.

    The mapping depends only on the item and the anchor time:
    - store from userId, channel from id
    - timestamp = anchor - (id % 14) days - (id * 37 % 1440) minutes
    - revenue delta from a sine-seeded pseudo-random number, rounded to tens

    Args:
        item: Decoded feed item; non-dict values map like an empty item.
        anchor_ms: Fetch time in epoch milliseconds.

    Returns:
        ActivityEvent with id "live_<id>".
    """
    if not isinstance(item, dict):
        item = {}

    item_id = _to_int(item.get("id"))
    user_id = _to_int(item.get("userId"))

    store = STORES[user_id % len(STORES)]
    channel = CHANNELS[item_id % len(CHANNELS)]

    days_ago = item_id % 14
    minutes_offset = (item_id * 37) % (24 * 60)
    timestamp = _ms_to_datetime(anchor_ms) - timedelta(days=days_ago, minutes=minutes_offset)

    rand = seeded_number(item_id * 13 + user_id * 97)
    revenue_delta = round_half_up(((rand - 0.42) * 900) / 10) * 10

    title = item.get("title")
    title = title.strip() if isinstance(title, str) else ""
    action = title[0].upper() + title[1:] if title else "External dataset event"

    return ActivityEvent(
        id=f"live_{item_id}",
        timestamp=timestamp,
        store=store,
        channel=channel,
        action=action,
        status=ActivityStatus.COMPLETED if item.get("completed") else ActivityStatus.PENDING,
        revenue_delta=revenue_delta,
    )


# =============================================================================
# Cache Types
# =============================================================================


@dataclass(frozen=True)
class ActivityCacheResult:
    """
    Outcome of a cache lookup.

    rows is None only when source is UNAVAILABLE; fetched_at_ms is 0 then.
    """
    rows: Optional[List[ActivityEvent]]
    source: DataSource
    fetched_at_ms: int


@dataclass
class _MemorySlot:
    fetched_at_ms: int = 0
    expires_at_ms: int = 0
    rows: Optional[List[ActivityEvent]] = None


@dataclass(frozen=True)
class _DiskEntry:
    fetched_at_ms: int
    rows: List[ActivityEvent]


class UpstreamFetchError(Exception):
    """Refresh from the upstream feed failed (timeout, network, non-2xx, bad JSON)."""


# =============================================================================
# Activity Cache
# =============================================================================


class ActivityCache:
    """
    Memory + disk cache around the upstream activity feed.

    One instance is shared by all request handlers of the process.

    Args:
        cache_dir: Directory holding the durable mirror file.
        url: Upstream feed URL.
        timeout_seconds: Bounded timeout for the upstream request.
        transport: Optional httpx transport (tests use httpx.MockTransport).
        clock: Returns epoch milliseconds. Injected in tests.
    """

    def __init__(
        self,
        cache_dir: Union[str, Path],
        url: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self._cache_dir = Path(cache_dir)
        self._url = url
        self._timeout = timeout_seconds
        self._transport = transport
        self._clock = clock or _now_ms
        self._memory = _MemorySlot()

    @property
    def cache_path(self) -> Path:
        return self._cache_dir / CACHE_FILENAME

    # -------------------------------------------------------------------------
    # Durable mirror
    # -------------------------------------------------------------------------

    def _read_disk(self) -> Optional[_DiskEntry]:
        """Read the mirror; any read, parse, or shape problem means no mirror."""
        try:
            raw = self.cache_path.read_text(encoding="utf-8")
            payload = json.loads(raw)
        except (OSError, ValueError):
            return None

        if not isinstance(payload, dict):
            return None

        fetched_at_ms = _to_int(payload.get("fetchedAtMs"))
        rows = payload.get("rows")
        if not fetched_at_ms or not isinstance(rows, list):
            return None

        try:
            events = [ActivityEvent.model_validate(row) for row in rows]
        except ValidationError:
            logger.warning(f"Ignoring corrupt activity cache file {self.cache_path}")
            return None

        return _DiskEntry(fetched_at_ms=fetched_at_ms, rows=events)

    def _write_disk(self, fetched_at_ms: int, rows: Sequence[ActivityEvent]) -> bool:
        """Replace the mirror atomically. Failures are logged, not raised."""
        payload: Dict[str, Any] = {
            "fetchedAtMs": fetched_at_ms,
            "rows": [row.model_dump(mode="json") for row in rows],
        }
        try:
            self._cache_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self._cache_dir, prefix=".activity-", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(payload, handle, indent=2)
                os.replace(tmp_path, self.cache_path)
            except BaseException:
                Path(tmp_path).unlink(missing_ok=True)
                raise
        except OSError as e:
            logger.warning(f"Failed to write activity cache {self.cache_path}: {e}")
            return False
        return True

    # -------------------------------------------------------------------------
    # Upstream
    # -------------------------------------------------------------------------

    async def _fetch_upstream(self) -> Any:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.get(self._url, headers={"accept": "application/json"})
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamFetchError(f"{type(e).__name__}: {e}") from e

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    async def get_activity_rows(
        self,
        ttl_ms: Optional[int] = None,
        max_items: int = 200,
    ) -> ActivityCacheResult:
        """
        Return activity rows, refreshing from upstream when the cache is stale.

        Args:
            ttl_ms: Freshness window; non-positive or missing means 5 minutes.
            max_items: Cap on the number of rows returned and cached.

        Returns:
            ActivityCacheResult tagged with the state that served it. Never
            raises for upstream problems.
        """
        ttl = ttl_ms if ttl_ms and ttl_ms > 0 else DEFAULT_TTL_MS
        now = self._clock()
        memory = self._memory

        if memory.rows is not None and now < memory.expires_at_ms:
            return ActivityCacheResult(
                rows=memory.rows[:max_items],
                source=DataSource.MEMORY_CACHE,
                fetched_at_ms=memory.fetched_at_ms,
            )

        disk = self._read_disk()

        if disk is not None and now < disk.fetched_at_ms + ttl:
            self._memory = _MemorySlot(
                fetched_at_ms=disk.fetched_at_ms,
                expires_at_ms=disk.fetched_at_ms + ttl,
                rows=disk.rows,
            )
            return ActivityCacheResult(
                rows=disk.rows[:max_items],
                source=DataSource.DISK_CACHE_FRESH,
                fetched_at_ms=disk.fetched_at_ms,
            )

        try:
            fetched_at_ms = self._clock()
            payload = await self._fetch_upstream()
        except UpstreamFetchError as e:
            if disk is not None:
                logger.warning(
                    f"Activity refresh failed ({e}); serving stale cache from "
                    f"{_ms_to_datetime(disk.fetched_at_ms).isoformat()}"
                )
                self._memory = _MemorySlot(
                    fetched_at_ms=disk.fetched_at_ms,
                    expires_at_ms=now + min(ttl, STALE_RETRY_MS),
                    rows=disk.rows,
                )
                return ActivityCacheResult(
                    rows=disk.rows[:max_items],
                    source=DataSource.DISK_CACHE_STALE,
                    fetched_at_ms=disk.fetched_at_ms,
                )

            logger.warning(f"Activity refresh failed ({e}) and no cache is available")
            return ActivityCacheResult(rows=None, source=DataSource.UNAVAILABLE, fetched_at_ms=0)

        items = payload if isinstance(payload, list) else []
        rows = [map_upstream_item(item, fetched_at_ms) for item in items[:max_items]]

        self._write_disk(fetched_at_ms, rows)
        self._memory = _MemorySlot(
            fetched_at_ms=fetched_at_ms,
            expires_at_ms=fetched_at_ms + ttl,
            rows=rows,
        )
        logger.info(f"Fetched {len(rows)} activity rows from {self._url}")

        return ActivityCacheResult(rows=rows, source=DataSource.FETCHED, fetched_at_ms=fetched_at_ms)


# =============================================================================
# Revenue Derivation
# =============================================================================


def _utc_date(ts: datetime) -> date:
    if ts.tzinfo is None:
        return ts.date()
    return ts.astimezone(timezone.utc).date()


def derive_revenue_series_from_activity(
    rows: Optional[Sequence[ActivityEvent]],
    days: int = 30,
    end_date: Optional[date] = None,
) -> Optional[List[RevenuePoint]]:
    """
    Build a daily revenue series from activity rows.

    Each of the `days` calendar days ending at end_date starts from a fixed
    baseline, then adds the day's revenue deltas and a per-event lift. Values
    are clamped to [6500, 26000]. Rows outside the window are ignored.

    Args:
        rows: Activity events.
        days: Series length.
        end_date: Last day of the series (UTC); defaults to today.

    Returns:
        RevenuePoint list ordered ascending, or None when there are no rows.
    """
    if not rows:
        return None

    end = end_date or datetime.now(timezone.utc).date()
    window = [d.date() for d in pd.date_range(end=pd.Timestamp(end), periods=days, freq="D")]

    frame = pd.DataFrame(
        {
            "day": [_utc_date(row.timestamp) for row in rows],
            "delta": [row.revenue_delta for row in rows],
        }
    )
    daily = (
        frame.groupby("day")["delta"]
        .agg(["sum", "count"])
        .reindex(window, fill_value=0)
    )

    series: List[RevenuePoint] = []
    for day, bucket in daily.iterrows():
        value = REVENUE_BASELINE + bucket["sum"] + bucket["count"] * REVENUE_LIFT_PER_EVENT
        series.append(
            RevenuePoint(
                date=day,
                revenue=int(clamp(round_half_up(float(value)), REVENUE_MIN, REVENUE_MAX)),
            )
        )

    return series
