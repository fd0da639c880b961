"""
Fixed-window per-client rate limiter.

Each key owns a counter and a window reset time. The first request for a key,
or the first after the window has passed, opens a new window with count=1.
Later requests increment the counter until it reaches the limit; further
requests inside the window are rejected.

This is a fixed window, not a sliding window or token bucket: a client can
burst up to twice the limit across a window boundary.

The table is plain process-local state shared by concurrent handlers. Entries
are replaced wholesale, so racing requests can at worst both be admitted.
Expired windows are swept out at most once per window length.

Usage:
    limiter = RateLimiter()
    result = limiter.check(f"copilot:{client_identity(request.headers)}", limit=10, window_ms=60_000)
    if not result.allowed:
        ...  # 429 with result.reset_at_ms
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RateLimitEntry:
    count: int
    reset_at_ms: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at_ms: int


class RateLimiter:
    """
    Fixed-window counter keyed by client identity.

    Args:
        clock: Returns the current time in epoch milliseconds. Injected in tests.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None) -> None:
        self._clock = clock or _now_ms
        self._entries: Dict[str, RateLimitEntry] = {}
        self._next_sweep_ms = 0

    def __len__(self) -> int:
        return len(self._entries)

    def _sweep(self, now: int) -> None:
        expired = [key for key, entry in self._entries.items() if now > entry.reset_at_ms]
        for key in expired:
            del self._entries[key]

    def check(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        """
        Count one request for `key` and report whether it is allowed.

        Args:
            key: Client identity (e.g. "copilot:203.0.113.7").
            limit: Requests allowed per window.
            window_ms: Window length in milliseconds.

        Returns:
            RateLimitResult with the remaining budget and the window reset time.
        """
        now = self._clock()
        if now >= self._next_sweep_ms:
            self._sweep(now)
            self._next_sweep_ms = now + window_ms

        entry = self._entries.get(key)

        if entry is None or now > entry.reset_at_ms:
            entry = RateLimitEntry(count=1, reset_at_ms=now + window_ms)
            self._entries[key] = entry
            return RateLimitResult(
                allowed=True,
                remaining=max(0, limit - entry.count),
                reset_at_ms=entry.reset_at_ms,
            )

        if entry.count >= limit:
            return RateLimitResult(allowed=False, remaining=0, reset_at_ms=entry.reset_at_ms)

        entry.count += 1
        return RateLimitResult(
            allowed=True,
            remaining=max(0, limit - entry.count),
            reset_at_ms=entry.reset_at_ms,
        )


def client_identity(headers: Mapping[str, str]) -> str:
    """
    Derive the client identity from proxy headers.

    Uses the first x-forwarded-for hop, then x-real-ip, else "unknown".
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return "unknown"
