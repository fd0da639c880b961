"""
Pytest configuration and shared fixtures for the Ops Copilot tests.

Provides:
- Settings built from explicit values (never from the developer's .env)
- A controllable millisecond clock for the rate limiter and activity cache
- Revenue series / activity row factories
- A scripted fake model backend
- A mock asyncpg pool for the PostgreSQL audit log store

Async tests use pytest-asyncio via @pytest.mark.asyncio.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Generator, List, Optional, Sequence
from unittest.mock import AsyncMock, Mock, patch

import pytest

from ops_copilot.core.config import Settings
from ops_copilot.models import ActivityEvent, ActivityStatus, DataMode, RevenuePoint


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    config.addinivalue_line(
        'markers',
        'slow: marks tests as slow (deselect with -m "not slow")'
    )


# ============================================================
# TIME
# ============================================================

# 2026-10-19T12:00:00Z
BASE_TIME_MS: int = 1_792_411_200_000


class FakeClock:
    """Callable returning a settable epoch-millisecond time."""

    def __init__(self, now_ms: int = BASE_TIME_MS) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================
# SETTINGS
# ============================================================

@pytest.fixture
def settings_factory(tmp_path) -> Callable[..., Settings]:
    """
    Build Settings from keyword overrides, ignoring any .env file.

    The activity cache directory always points into tmp_path.
    """
    def _make(**overrides: Any) -> Settings:
        values: Dict[str, Any] = {
            'data_mode': DataMode.DEMO,
            'activity_cache_dir': str(tmp_path / 'cache'),
            'openai_api_key': None,
            'database_url': None,
            'request_log_file': None,
            'copilot_api_key': 'test_key',
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def settings(settings_factory) -> Settings:
    return settings_factory()


# ============================================================
# DATA FACTORIES
# ============================================================

@pytest.fixture
def make_series() -> Callable[..., List[RevenuePoint]]:
    """Build an ascending daily series from revenue values."""
    def _make(revenues: Sequence[int], start: date = date(2026, 9, 1)) -> List[RevenuePoint]:
        return [
            RevenuePoint(date=start + timedelta(days=i), revenue=int(value))
            for i, value in enumerate(revenues)
        ]

    return _make


@pytest.fixture
def make_activity() -> Callable[..., List[ActivityEvent]]:
    """
    Build activity rows one hour apart ending at `end`.

    statuses is a sequence of booleans: True for Completed.
    """
    def _make(
        statuses: Sequence[bool],
        end: datetime = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc),
        revenue_delta: int = 100,
    ) -> List[ActivityEvent]:
        return [
            ActivityEvent(
                id=f'act_{i}',
                timestamp=end - timedelta(hours=i),
                store='Downtown',
                channel='DoorDash',
                action='Menu sync completed',
                status=ActivityStatus.COMPLETED if done else ActivityStatus.PENDING,
                revenue_delta=revenue_delta,
            )
            for i, done in enumerate(statuses)
        ]

    return _make


# ============================================================
# COPILOT FIXTURES
# ============================================================

@pytest.fixture
def valid_answer() -> Dict[str, Any]:
    """A model answer that satisfies the copilot contract."""
    return {
        'summary': 'Revenue is down 4.1% week over week, driven by a dip on 2026-10-10.',
        'key_drivers': [
            'Week-over-week change: -4.1%',
            'Top anomaly on 2026-10-10 was 2.9 standard deviations below baseline',
            'Pending activity is elevated',
        ],
        'recommended_actions': [
            {'action': 'Audit DoorDash menu availability', 'reason': 'Down anomaly on a delivery-heavy day', 'priority': 'high'},
            {'action': 'Clear pending refunds', 'reason': 'Backlog suppresses reorders', 'priority': 'medium'},
            {'action': 'Add a daily order-flow check', 'reason': 'Catch outages early', 'priority': 'low'},
        ],
        'confidence': 0.71,
        'used_data_points': ['Week-over-week change: -4.1%', 'prompt_version: v1'],
    }


class FakeModelClient:
    """
    Scripted model backend.

    Each generate() call pops the next scripted item: a dict is returned, an
    exception instance is raised. Calls are recorded for assertions.
    """

    def __init__(self, *script: Any) -> None:
        self.script: List[Any] = list(script)
        self.calls: List[Dict[str, Any]] = []

    async def generate(
        self,
        model: str,
        system_prompt: str,
        query: str,
        data_points: Sequence[str],
        max_output_tokens: int,
        extra_instruction: Optional[str] = None,
    ) -> Dict[str, Any]:
        self.calls.append({
            'model': model,
            'system_prompt': system_prompt,
            'query': query,
            'data_points': list(data_points),
            'max_output_tokens': max_output_tokens,
            'extra_instruction': extra_instruction,
        })
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture
def fake_model_client() -> Callable[..., FakeModelClient]:
    return FakeModelClient


# ============================================================
# DATABASE MOCK FIXTURES
# ============================================================

@pytest.fixture
def mock_db_pool() -> AsyncMock:
    """
    Mock asyncpg pool whose acquire() yields a mock connection.

    Usage:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        conn.fetch.return_value = [...]
    """
    pool = AsyncMock()

    conn = AsyncMock()
    conn.execute = AsyncMock(return_value='INSERT 0 1')
    conn.fetch = AsyncMock(return_value=[])

    acquire_context = AsyncMock()
    acquire_context.__aenter__ = AsyncMock(return_value=conn)
    acquire_context.__aexit__ = AsyncMock(return_value=None)
    pool.acquire = Mock(return_value=acquire_context)

    pool.close = AsyncMock(return_value=None)

    return pool


@pytest.fixture
def mock_database(mock_db_pool: AsyncMock) -> Generator[AsyncMock, None, None]:
    """Route ops_copilot.core.database helpers to the mock pool."""
    with patch('ops_copilot.core.database.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
        yield mock_db_pool
