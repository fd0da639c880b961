"""
Test suite for the request audit log and rolling health metrics.

Covers:
1. In-memory store bounds and time filtering
2. JSON Lines file store replay and compaction
3. PostgreSQL store queries (mocked asyncpg pool)
4. Audit write failures never propagate
5. summarize_health aggregation
"""

import asyncio
import json
from dataclasses import asdict

import asyncpg
import pytest

from ops_copilot.models import DataMode
from ops_copilot.sql import CREATE_API_LOGS_TABLE, INSERT_API_LOG, SELECT_API_LOGS_SINCE
from ops_copilot.services.request_log import (
    ApiLogEntry,
    FileRequestLogStore,
    InMemoryRequestLogStore,
    PostgresRequestLogStore,
    summarize_health,
)


def entry(ts=1_000, endpoint='/api/revenue', status_code=200, latency_ms=40, **kwargs) -> ApiLogEntry:
    return ApiLogEntry(ts=ts, endpoint=endpoint, status_code=status_code, latency_ms=latency_ms, **kwargs)


# =============================================================================
# IN-MEMORY STORE
# =============================================================================


class TestInMemoryStore:

    @pytest.mark.asyncio
    async def test_entries_since_filters_by_time(self):
        store = InMemoryRequestLogStore()
        for ts in (100, 200, 300):
            await store.record(entry(ts=ts))

        recent = await store.entries_since(200)

        assert [e.ts for e in recent] == [200, 300]

    @pytest.mark.asyncio
    async def test_oldest_entries_drop_past_capacity(self):
        store = InMemoryRequestLogStore(max_entries=3)
        for ts in range(5):
            await store.record(entry(ts=ts))

        assert len(store) == 3
        assert [e.ts for e in await store.entries_since(0)] == [2, 3, 4]


# =============================================================================
# FILE STORE
# =============================================================================


class TestFileStore:

    @pytest.mark.asyncio
    async def test_entries_survive_a_restart(self, tmp_path):
        path = tmp_path / 'logs' / 'api_logs.jsonl'
        store = FileRequestLogStore(path)
        await store.record(entry(ts=100, endpoint='/api/copilot', prompt_version='v2', schema_pass=True))
        await store.record(entry(ts=200, status_code=500, error_type='server_error'))

        reopened = FileRequestLogStore(path)

        assert await reopened.entries_since(0) == [
            entry(ts=100, endpoint='/api/copilot', prompt_version='v2', schema_pass=True),
            entry(ts=200, status_code=500, error_type='server_error'),
        ]

    def test_unreadable_lines_are_skipped(self, tmp_path):
        path = tmp_path / 'api_logs.jsonl'
        good = json.dumps(asdict(entry(ts=300)))
        path.write_text(f'{good}\nnot json\n[1, 2]\n{{"ts": 5}}\n', encoding='utf-8')

        store = FileRequestLogStore(path)

        assert len(store) == 1
        assert path.read_text(encoding='utf-8') == f'{good}\n'

    def test_file_is_compacted_past_capacity(self, tmp_path):
        path = tmp_path / 'api_logs.jsonl'
        path.write_text(
            ''.join(json.dumps(asdict(entry(ts=ts))) + '\n' for ts in range(5)),
            encoding='utf-8',
        )

        store = FileRequestLogStore(path, max_entries=2)

        assert len(store) == 2
        assert len(path.read_text(encoding='utf-8').splitlines()) == 2

    @pytest.mark.asyncio
    async def test_write_failures_are_swallowed(self, tmp_path, caplog):
        blocker = tmp_path / 'not_a_dir'
        blocker.write_text('', encoding='utf-8')
        store = FileRequestLogStore(blocker / 'api_logs.jsonl')

        await store.record(entry(endpoint='/api/revenue'))

        assert len(store) == 1
        assert 'Failed to write API log for /api/revenue' in caplog.text


# =============================================================================
# POSTGRES STORE
# =============================================================================


class TestPostgresStore:

    @pytest.mark.asyncio
    async def test_ensure_schema_runs_ddl(self, mock_database):
        conn = mock_database.acquire.return_value.__aenter__.return_value

        await PostgresRequestLogStore().ensure_schema()

        conn.execute.assert_awaited_once_with(CREATE_API_LOGS_TABLE)

    @pytest.mark.asyncio
    async def test_record_inserts_all_columns(self, mock_database):
        conn = mock_database.acquire.return_value.__aenter__.return_value
        logged = entry(
            ts=5_000,
            endpoint='/api/copilot',
            status_code=200,
            latency_ms=812,
            error_type=None,
            model_used='gpt-4o',
            prompt_version='v2',
            schema_pass=True,
        )

        await PostgresRequestLogStore().record(logged)

        conn.execute.assert_awaited_once_with(
            INSERT_API_LOG, 5_000, '/api/copilot', 200, 812, None, 'gpt-4o', 'v2', True
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize('error', [
        asyncpg.PostgresError('boom'),
        asyncpg.InterfaceError('pool closed'),
        asyncio.TimeoutError(),
        ConnectionRefusedError(),
    ])
    async def test_record_failures_are_swallowed(self, mock_database, error, caplog):
        conn = mock_database.acquire.return_value.__aenter__.return_value
        conn.execute.side_effect = error

        await PostgresRequestLogStore().record(entry(endpoint='/api/metrics'))

        assert 'Failed to write API log for /api/metrics' in caplog.text

    @pytest.mark.asyncio
    async def test_entries_since_maps_rows(self, mock_database):
        conn = mock_database.acquire.return_value.__aenter__.return_value
        conn.fetch.return_value = [
            {
                'ts': 9_000,
                'endpoint': '/api/copilot',
                'status_code': 200,
                'latency_ms': 300,
                'error_type': 'schema_invalid',
                'model_used': 'gpt-4o-mini',
                'prompt_version': 'v1',
                'schema_pass': False,
            },
        ]

        entries = await PostgresRequestLogStore().entries_since(8_000)

        conn.fetch.assert_awaited_once_with(SELECT_API_LOGS_SINCE, 8_000)
        assert entries == [
            entry(
                ts=9_000,
                endpoint='/api/copilot',
                latency_ms=300,
                error_type='schema_invalid',
                model_used='gpt-4o-mini',
                prompt_version='v1',
                schema_pass=False,
            )
        ]


# =============================================================================
# HEALTH SUMMARY
# =============================================================================


class TestSummarizeHealth:

    def test_empty_window(self, settings):
        metrics = summarize_health([], settings)

        assert metrics.total_requests_24h == 0
        assert metrics.p95_latency_ms_24h == 0.0
        assert metrics.error_rate_24h == 0.0
        assert metrics.copilot_requests_24h == 0
        assert metrics.copilot_schema_pass_rate_24h is None

    def test_p95_is_an_observed_latency(self, settings):
        entries = [entry(latency_ms=10 * i) for i in range(1, 21)]

        metrics = summarize_health(entries, settings)

        assert metrics.p95_latency_ms_24h == 190.0

    def test_error_rate_counts_4xx_and_5xx(self, settings):
        entries = [
            entry(status_code=200),
            entry(status_code=401),
            entry(status_code=429),
            entry(status_code=500),
        ]

        assert summarize_health(entries, settings).error_rate_24h == 0.75

    def test_copilot_counts_and_schema_pass_rate(self, settings):
        entries = [
            entry(endpoint='/api/copilot', schema_pass=True),
            entry(endpoint='/api/copilot', schema_pass=True),
            entry(endpoint='/api/copilot', schema_pass=False),
            entry(endpoint='/api/copilot', status_code=401),
            entry(endpoint='/api/activity'),
        ]

        metrics = summarize_health(entries, settings)

        assert metrics.copilot_requests_24h == 4
        assert metrics.ai_requests_24h == 4
        assert metrics.copilot_schema_pass_rate_24h == 0.5
        assert metrics.total_requests_24h == 5

    def test_configuration_echo(self, settings_factory):
        settings = settings_factory(
            data_mode=DataMode.MIXED,
            data_cache_ttl_seconds=90,
            openai_api_key='sk-test',
        )

        metrics = summarize_health([], settings)

        assert metrics.data_mode == DataMode.MIXED
        assert metrics.data_cache_ttl_seconds == 90
        assert metrics.live_activity_url == settings.live_activity_url
        assert metrics.openai_configured is True
