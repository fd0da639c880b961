"""
Test suite for copilot request handling.

Drives CopilotOrchestrator.handle() through every terminal state with a
scripted FakeModelClient:

    401 unauthorized, 429 rate limited, 400 parse errors,
    200 demo_mode / none / openai_error / schema_invalid, 500 server_error

and checks the request helpers (body parsing, extra data points, model
routing, analytics context).
"""

import json
from datetime import date

import pytest

from ops_copilot.models import (
    Anomaly,
    AnomalyDirection,
    CopilotMode,
    DataMode,
    ErrorType,
    FallbackReason,
    ForecastPoint,
    ModelFailureReason,
    PromptVersion,
)
from ops_copilot.services.copilot import (
    MAX_QUERY_LENGTH,
    STRICT_RETRY_INSTRUCTION,
    CopilotOrchestrator,
    CopilotRequestError,
    build_data_context,
    is_complex_query,
    normalize_extra_data_points,
    parse_copilot_body,
)
from ops_copilot.services.data_sources import AnalyticsDataProvider
from ops_copilot.services.live_activity import CACHE_FILENAME, ActivityCache
from ops_copilot.services.model_client import ModelBackendError, load_prompt
from ops_copilot.services.rate_limit import RateLimiter
from ops_copilot.services.schema_validation import validate_copilot_response


INVALID_ANSWER = {'summary': 'Revenue is fine.'}


def body(**payload) -> bytes:
    return json.dumps(payload).encode('utf-8')


@pytest.fixture
def make_orchestrator(settings_factory, clock, tmp_path):
    def _make(model_client=None, **overrides) -> CopilotOrchestrator:
        settings = settings_factory(**overrides)
        cache = ActivityCache(cache_dir=tmp_path / 'cache', url='https://feed.test/todos', clock=clock)
        return CopilotOrchestrator(
            settings=settings,
            rate_limiter=RateLimiter(clock=clock),
            data_provider=AnalyticsDataProvider(settings, cache),
            model_client=model_client,
        )

    return _make


def answer_part(outcome) -> dict:
    return {k: v for k, v in outcome.body.items() if k != 'meta'}


# =============================================================================
# REJECTIONS
# =============================================================================


class TestRejections:

    @pytest.mark.asyncio
    @pytest.mark.parametrize('credential', [None, '', 'wrong', 'test_key '])
    async def test_bad_credential(self, make_orchestrator, credential):
        outcome = await make_orchestrator().handle(credential, '1.2.3.4', body(query='hi'))

        assert outcome.status_code == 401
        assert outcome.body == {'error': 'Invalid x-api-key.'}
        assert outcome.error_type == ErrorType.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_rate_limit_per_client(self, make_orchestrator, clock):
        orchestrator = make_orchestrator(copilot_rate_limit=2)

        for _ in range(2):
            ok = await orchestrator.handle('test_key', '1.2.3.4', body(query='hi'))
            assert ok.status_code == 200
        limited = await orchestrator.handle('test_key', '1.2.3.4', body(query='hi'))
        other = await orchestrator.handle('test_key', '5.6.7.8', body(query='hi'))

        assert limited.status_code == 429
        assert limited.body == {'error': 'Rate limit exceeded. Try again soon.'}
        assert limited.error_type == ErrorType.RATE_LIMITED
        assert limited.headers['x-ratelimit-reset'] == str(clock.now_ms + 60_000)
        assert other.status_code == 200

    @pytest.mark.asyncio
    async def test_unauthorized_requests_do_not_consume_quota(self, make_orchestrator):
        orchestrator = make_orchestrator(copilot_rate_limit=1)
        for _ in range(3):
            await orchestrator.handle('nope', '1.2.3.4', body(query='hi'))

        outcome = await orchestrator.handle('test_key', '1.2.3.4', body(query='hi'))

        assert outcome.status_code == 200

    @pytest.mark.asyncio
    @pytest.mark.parametrize('raw, error_type, message', [
        (b'{not json', ErrorType.INVALID_JSON, 'Invalid JSON body.'),
        (b'', ErrorType.INVALID_JSON, 'Invalid JSON body.'),
        (b'["query"]', ErrorType.INVALID_JSON, 'Invalid JSON body.'),
        (b'{}', ErrorType.EMPTY_QUERY, 'Query is required.'),
        (b'{"query": "   "}', ErrorType.EMPTY_QUERY, 'Query is required.'),
        (b'{"query": 42}', ErrorType.EMPTY_QUERY, 'Query is required.'),
        (json.dumps({'query': 'x' * 601}).encode(), ErrorType.QUERY_TOO_LONG,
         'Query too long (max 600 characters).'),
    ])
    async def test_bad_bodies(self, make_orchestrator, raw, error_type, message):
        outcome = await make_orchestrator().handle('test_key', '1.2.3.4', raw)

        assert outcome.status_code == 400
        assert outcome.body == {'error': message}
        assert outcome.error_type == error_type

    @pytest.mark.asyncio
    @pytest.mark.parametrize('query', ['', 'x' * 601])
    async def test_rejected_query_keeps_prompt_version(self, make_orchestrator, query):
        outcome = await make_orchestrator().handle(
            'test_key', '1.2.3.4', body(query=query, prompt_version='v2')
        )

        assert outcome.status_code == 400
        assert outcome.prompt_version == PromptVersion.V2

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_a_500(self, make_orchestrator):
        orchestrator = make_orchestrator()

        async def broken(days=30):
            raise RuntimeError('disk on fire')

        orchestrator.data_provider.get_revenue_series = broken

        outcome = await orchestrator.handle('test_key', '1.2.3.4', body(query='hi', prompt_version='v2'))

        assert outcome.status_code == 500
        assert outcome.body == {'error': 'Copilot request failed.'}
        assert outcome.error_type == ErrorType.SERVER_ERROR
        assert outcome.prompt_version == PromptVersion.V2


# =============================================================================
# ANSWERS
# =============================================================================


class TestDemoMode:

    @pytest.mark.asyncio
    async def test_demo_answer(self, make_orchestrator):
        outcome = await make_orchestrator().handle('test_key', '1.2.3.4', body(query='How are sales?'))

        assert outcome.status_code == 200
        assert outcome.error_type == ErrorType.DEMO_MODE
        assert outcome.schema_pass is True
        assert outcome.model_used is None
        assert outcome.headers == {
            'x-prompt-version': 'v1',
            'x-openai-mode': 'demo',
            'x-copilot-fallback': 'demo_mode',
        }
        assert outcome.body['meta'] == {
            'mode': 'demo',
            'fallback_reason': 'demo_mode',
            'prompt_version': 'v1',
        }
        assert validate_copilot_response(answer_part(outcome)).ok

    @pytest.mark.asyncio
    async def test_prompt_version_v2(self, make_orchestrator):
        outcome = await make_orchestrator().handle(
            'test_key', '1.2.3.4', body(query='hi', prompt_version='v2')
        )

        assert outcome.headers['x-prompt-version'] == 'v2'
        assert outcome.body['meta']['prompt_version'] == 'v2'
        assert 'prompt_version: v2' in outcome.body['used_data_points']

    @pytest.mark.asyncio
    async def test_unknown_prompt_version_means_v1(self, make_orchestrator):
        outcome = await make_orchestrator().handle(
            'test_key', '1.2.3.4', body(query='hi', prompt_version='v9')
        )

        assert outcome.prompt_version == PromptVersion.V1


class TestModelMode:

    @pytest.mark.asyncio
    async def test_valid_answer_is_returned(self, make_orchestrator, fake_model_client, valid_answer):
        client = fake_model_client(valid_answer)
        orchestrator = make_orchestrator(client)

        outcome = await orchestrator.handle('test_key', '1.2.3.4', body(query='How are sales?'))

        assert outcome.status_code == 200
        assert answer_part(outcome) == valid_answer
        assert outcome.body['meta'] == {'mode': 'live', 'fallback_reason': 'none', 'prompt_version': 'v1'}
        assert outcome.headers['x-copilot-fallback'] == 'none'
        assert outcome.headers['x-openai-mode'] == 'live'
        assert outcome.headers['x-model-used'] == 'gpt-4o-mini'
        assert outcome.model_used == 'gpt-4o-mini'
        assert outcome.error_type is None
        assert outcome.schema_pass is True
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_model_call_arguments(self, make_orchestrator, fake_model_client, valid_answer):
        client = fake_model_client(valid_answer)
        orchestrator = make_orchestrator(client, copilot_max_output_tokens=512)

        await orchestrator.handle(
            'test_key',
            '1.2.3.4',
            body(query='How are sales?', prompt_version='v2', extra_data_points=['Promo ran Friday']),
        )

        call = client.calls[0]
        assert call['system_prompt'] == load_prompt(PromptVersion.V2)
        assert call['query'] == 'How are sales?'
        assert call['max_output_tokens'] == 512
        assert call['extra_instruction'] is None
        assert call['data_points'][0] == 'Promo ran Friday'
        assert call['data_points'][-1] == 'prompt_version: v2'

    @pytest.mark.asyncio
    async def test_diagnostic_question_uses_quality_model(self, make_orchestrator, fake_model_client, valid_answer):
        client = fake_model_client(valid_answer)

        outcome = await make_orchestrator(client).handle(
            'test_key', '1.2.3.4', body(query='Why did revenue dip last week?')
        )

        assert client.calls[0]['model'] == 'gpt-4o'
        assert outcome.headers['x-model-used'] == 'gpt-4o'

    @pytest.mark.asyncio
    async def test_strict_retry_recovers(self, make_orchestrator, fake_model_client, valid_answer):
        client = fake_model_client(INVALID_ANSWER, valid_answer)

        outcome = await make_orchestrator(client).handle('test_key', '1.2.3.4', body(query='hi'))

        assert answer_part(outcome) == valid_answer
        assert outcome.headers['x-copilot-fallback'] == 'none'
        assert len(client.calls) == 2
        assert client.calls[1]['extra_instruction'] == STRICT_RETRY_INSTRUCTION

    @pytest.mark.asyncio
    async def test_two_invalid_answers_fall_back(self, make_orchestrator, fake_model_client):
        client = fake_model_client(INVALID_ANSWER, {'summary': 'still wrong', 'extra': True})

        outcome = await make_orchestrator(client).handle('test_key', '1.2.3.4', body(query='hi'))

        assert outcome.status_code == 200
        assert outcome.error_type == ErrorType.SCHEMA_INVALID
        assert outcome.schema_pass is False
        assert outcome.headers['x-copilot-fallback'] == 'schema_invalid'
        assert outcome.body['meta']['mode'] == CopilotMode.LIVE.value
        assert outcome.body['meta']['fallback_reason'] == FallbackReason.SCHEMA_INVALID.value
        assert validate_copilot_response(answer_part(outcome)).ok
        assert len(client.calls) == 2

    @pytest.mark.asyncio
    async def test_backend_error_falls_back_without_retry(self, make_orchestrator, fake_model_client):
        client = fake_model_client(ModelBackendError(ModelFailureReason.REQUEST_FAILED, 'APITimeoutError'))

        outcome = await make_orchestrator(client).handle('test_key', '1.2.3.4', body(query='hi'))

        assert outcome.status_code == 200
        assert outcome.error_type == ErrorType.OPENAI_ERROR
        assert outcome.schema_pass is True
        assert outcome.model_used == 'gpt-4o-mini'
        assert outcome.headers['x-copilot-fallback'] == 'openai_error'
        assert outcome.body['meta']['fallback_reason'] == 'openai_error'
        assert not outcome.body['summary'].startswith('Demo Copilot mode')
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_backend_error_on_retry(self, make_orchestrator, fake_model_client):
        client = fake_model_client(INVALID_ANSWER, ModelBackendError(ModelFailureReason.INVALID_JSON))

        outcome = await make_orchestrator(client).handle('test_key', '1.2.3.4', body(query='hi'))

        assert outcome.error_type == ErrorType.OPENAI_ERROR
        assert len(client.calls) == 2

    @pytest.mark.asyncio
    async def test_missing_prompt_template_falls_back(self, make_orchestrator, fake_model_client, valid_answer, monkeypatch):
        def missing(version):
            raise FileNotFoundError(f'copilot_{version.value}.md')

        monkeypatch.setattr('ops_copilot.services.copilot.load_prompt', missing)
        client = fake_model_client(valid_answer)

        outcome = await make_orchestrator(client).handle('test_key', '1.2.3.4', body(query='hi'))

        assert outcome.status_code == 200
        assert outcome.error_type == ErrorType.OPENAI_ERROR
        assert outcome.headers['x-copilot-fallback'] == 'openai_error'
        assert client.calls == []


class TestLiveData:

    @pytest.mark.asyncio
    async def test_offsetless_mirror_timestamps(self, make_orchestrator, clock, tmp_path):
        """A mirror written without UTC offsets still answers in mixed mode."""
        rows = [
            {
                'id': f'live_{i}',
                'timestamp': '2026-10-18T10:00:00',
                'store': 'Downtown',
                'channel': 'DoorDash',
                'action': 'Menu sync completed',
                'status': 'Completed' if i % 2 else 'Pending',
                'revenue_delta': 120,
            }
            for i in range(6)
        ]
        cache_dir = tmp_path / 'cache'
        cache_dir.mkdir()
        (cache_dir / CACHE_FILENAME).write_text(
            json.dumps({'fetchedAtMs': clock.now_ms, 'rows': rows}), encoding='utf-8'
        )

        outcome = await make_orchestrator(data_mode=DataMode.MIXED).handle(
            'test_key', '1.2.3.4', body(query='How are sales?')
        )

        assert outcome.status_code == 200
        assert outcome.error_type == ErrorType.DEMO_MODE


# =============================================================================
# REQUEST HELPERS
# =============================================================================


class TestParseBody:

    def test_query_is_trimmed(self):
        parsed = parse_copilot_body(body(query='  How are sales?  '))

        assert parsed.query == 'How are sales?'
        assert parsed.prompt_version == PromptVersion.V1
        assert parsed.extra_data_points == []

    def test_max_length_query_accepted(self):
        assert len(parse_copilot_body(body(query='x' * MAX_QUERY_LENGTH)).query) == MAX_QUERY_LENGTH

    def test_rejection_carries_status(self):
        with pytest.raises(CopilotRequestError) as exc_info:
            parse_copilot_body(b'null')

        assert exc_info.value.status_code == 400
        assert exc_info.value.error_type == ErrorType.INVALID_JSON


class TestExtraDataPoints:

    def test_cleaning(self):
        cleaned = normalize_extra_data_points(['  a \n\t b ', 7, None, '   ', 'c'])

        assert cleaned == ['a b', 'c']

    def test_caps_count_and_length(self):
        cleaned = normalize_extra_data_points(['y' * 500] + [f'p{i}' for i in range(20)])

        assert len(cleaned) == 12
        assert len(cleaned[0]) == 238
        assert cleaned[0].endswith('…')

    @pytest.mark.parametrize('raw', [None, 'a string', {'a': 1}])
    def test_non_list_ignored(self, raw):
        assert normalize_extra_data_points(raw) == []


class TestModelRouting:

    @pytest.mark.parametrize('query', [
        'Why is revenue down?',
        'What is the root cause of the dip?',
        'Give me an action plan',
        'What should we do this week?',
        'Any anomalies?',
        'Do you recommend a promo?',
        'x' * 121,
    ])
    def test_complex(self, query):
        assert is_complex_query(query)

    @pytest.mark.parametrize('query', ['How are sales?', 'Total revenue this month', 'x' * 120])
    def test_simple(self, query):
        assert not is_complex_query(query)


class TestDataContext:

    def test_points_and_summary(self, make_series):
        series = make_series([1000] * 7 + [1100] * 7)
        forecast = [ForecastPoint(date=date(2026, 9, 15), revenue=1150)]
        anomaly = Anomaly(date=date(2026, 9, 8), revenue=1100, z=2.5, direction=AnomalyDirection.UP, baseline_avg=1000)

        context = build_data_context(series, forecast, [anomaly], PromptVersion.V1, ['client note'])

        assert context.data_points[0] == 'client note'
        assert 'Latest date: 2026-09-14 revenue 1100' in context.data_points
        assert 'Last 7 days total revenue: 7700' in context.data_points
        assert 'Previous 7 days total revenue: 7000' in context.data_points
        assert 'Week-over-week change: 10.0%' in context.data_points
        assert 'Anomaly 1: 2026-09-08 revenue 1100 (z=2.50)' in context.data_points
        assert '7-day forecast: 2026-09-15: 1150' in context.data_points
        assert context.data_points[-1] == 'prompt_version: v1'
        assert context.summary.week_over_week == pytest.approx(0.1)
        assert context.summary.top_anomaly['direction'] == 'up'

    def test_short_series_has_zero_change(self, make_series):
        context = build_data_context(make_series([500] * 3), [], [], PromptVersion.V2)

        assert context.summary.week_over_week == 0.0
        assert context.summary.top_anomaly is None
        assert 'Previous 7 days total revenue: 0' in context.data_points
