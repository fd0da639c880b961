"""
Request audit log and rolling service health.

Every HTTP request produces one ApiLogEntry (written by the middleware in
main.py). Two stores implement the same interface:

- InMemoryRequestLogStore: bounded deque, used when no log file is configured
- FileRequestLogStore: the in-memory deque mirrored to a JSON Lines file so
  the 24h metrics survive restarts, the default
- PostgresRequestLogStore: asyncpg-backed table api_logs, used when
  DATABASE_URL is set

record() never raises: an audit write failure is logged and the request it
describes still succeeds.

summarize_health() turns the last 24 hours of entries into HealthMetrics.
"""

import asyncio
import json
import logging
import time
from collections import deque
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Deque, List, Optional, Protocol, Sequence

import asyncpg
import numpy as np

from ops_copilot.core.config import Settings
from ops_copilot.core.database import execute_command, execute_query
from ops_copilot.models import HealthMetrics
from ops_copilot.sql import CREATE_API_LOGS_TABLE, INSERT_API_LOG, SELECT_API_LOGS_SINCE


logger = logging.getLogger(__name__)


HEALTH_WINDOW_MS: int = 24 * 60 * 60 * 1000

COPILOT_ENDPOINT: str = "/api/copilot"

P95: float = 95.0


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ApiLogEntry:
    """One audited request. ts is epoch milliseconds."""
    ts: int
    endpoint: str
    status_code: int
    latency_ms: int
    error_type: Optional[str] = None
    model_used: Optional[str] = None
    prompt_version: Optional[str] = None
    schema_pass: Optional[bool] = None

    @classmethod
    def from_record(cls, record: Any) -> "ApiLogEntry":
        return cls(
            ts=int(record["ts"]),
            endpoint=record["endpoint"],
            status_code=int(record["status_code"]),
            latency_ms=int(record["latency_ms"]),
            error_type=record["error_type"],
            model_used=record["model_used"],
            prompt_version=record["prompt_version"],
            schema_pass=record["schema_pass"],
        )


class RequestLogStore(Protocol):
    async def record(self, entry: ApiLogEntry) -> None:
        ...

    async def entries_since(self, since_ms: int) -> List[ApiLogEntry]:
        ...


class InMemoryRequestLogStore:
    """Process-local audit log; the oldest entries drop off past max_entries."""

    def __init__(self, max_entries: int = 50_000) -> None:
        self._entries: Deque[ApiLogEntry] = deque(maxlen=max(1, max_entries))

    async def record(self, entry: ApiLogEntry) -> None:
        self._entries.append(entry)

    async def entries_since(self, since_ms: int) -> List[ApiLogEntry]:
        return [entry for entry in self._entries if entry.ts >= since_ms]

    def __len__(self) -> int:
        return len(self._entries)


class FileRequestLogStore(InMemoryRequestLogStore):
    """
    In-memory audit log mirrored to a JSON Lines file.

    The file is replayed on construction, so the rolling metrics survive a
    restart. Unreadable lines are skipped. When the file holds more than
    max_entries lines it is rewritten with only the newest ones.
    """

    def __init__(self, path: Path, max_entries: int = 50_000) -> None:
        super().__init__(max_entries=max_entries)
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        try:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error(f"Failed to read API log file {self.path}: {e}")
            return

        for line in lines:
            try:
                self._entries.append(ApiLogEntry.from_record(json.loads(line)))
            except (ValueError, TypeError, KeyError):
                continue

        if len(lines) > len(self._entries):
            self._rewrite()

    def _rewrite(self) -> None:
        try:
            self.path.write_text(
                "".join(json.dumps(asdict(entry)) + "\n" for entry in self._entries),
                encoding="utf-8",
            )
        except OSError as e:
            logger.error(f"Failed to compact API log file {self.path}: {e}")

    def _append(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(line)

    async def record(self, entry: ApiLogEntry) -> None:
        await super().record(entry)
        try:
            await asyncio.to_thread(self._append, json.dumps(asdict(entry)) + "\n")
        except OSError as e:
            logger.error(f"Failed to write API log for {entry.endpoint}: {e}")


class PostgresRequestLogStore:
    """
    Audit log persisted in the api_logs table.

    The pool itself is owned by ops_copilot.core.database; call
    ensure_schema() once after init_db().
    """

    async def ensure_schema(self) -> None:
        await execute_command(CREATE_API_LOGS_TABLE)

    async def record(self, entry: ApiLogEntry) -> None:
        try:
            await execute_command(
                INSERT_API_LOG,
                entry.ts,
                entry.endpoint,
                entry.status_code,
                entry.latency_ms,
                entry.error_type,
                entry.model_used,
                entry.prompt_version,
                entry.schema_pass,
            )
        except (
            asyncpg.PostgresError,
            asyncpg.InterfaceError,
            asyncio.TimeoutError,
            OSError,
        ) as e:
            logger.error(f"Failed to write API log for {entry.endpoint}: {e}")

    async def entries_since(self, since_ms: int) -> List[ApiLogEntry]:
        rows = await execute_query(SELECT_API_LOGS_SINCE, since_ms)
        return [ApiLogEntry.from_record(row) for row in rows]


def summarize_health(
    entries: Sequence[ApiLogEntry],
    settings: Settings,
) -> HealthMetrics:
    """
    Compute the 24h health block from audit entries.

    Args:
        entries: Entries already restricted to the 24h window.
        settings: Supplies the configuration echo fields.

    Returns:
        HealthMetrics. p95 latency uses the lower-rank percentile (an observed
        value, never an interpolation). Error rate counts status >= 400.
        The schema pass rate is None when there were no copilot requests.
    """
    total = len(entries)
    latencies = np.asarray([entry.latency_ms for entry in entries], dtype=np.float64)

    p95_latency = float(np.percentile(latencies, P95, method="lower")) if total else 0.0
    errors = sum(1 for entry in entries if entry.status_code >= 400)

    copilot = [entry for entry in entries if entry.endpoint == COPILOT_ENDPOINT]
    schema_passes = sum(1 for entry in copilot if entry.schema_pass is True)

    return HealthMetrics(
        p95_latency_ms_24h=p95_latency,
        error_rate_24h=errors / total if total else 0.0,
        copilot_requests_24h=len(copilot),
        copilot_schema_pass_rate_24h=schema_passes / len(copilot) if copilot else None,
        ai_requests_24h=len(copilot),
        total_requests_24h=total,
        data_mode=settings.data_mode,
        data_cache_ttl_seconds=round(settings.cache_ttl_ms / 1000),
        live_activity_url=settings.live_activity_url,
        openai_configured=settings.openai_enabled,
    )
