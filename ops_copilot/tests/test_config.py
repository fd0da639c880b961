"""
Test suite for environment-driven settings.

Bad values for the data mode and cache TTL must never stop the service from
starting; they fall back to defaults.
"""

import pytest

from ops_copilot.core.config import DEFAULT_CACHE_TTL_SECONDS, Settings, get_settings
from ops_copilot.models import DataMode


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        'DATA_MODE',
        'DATA_CACHE_TTL_SECONDS',
        'OPENAI_API_KEY',
        'DATABASE_URL',
        'COPILOT_API_KEY',
        'LIVE_ACTIVITY_URL',
        'REQUEST_LOG_FILE',
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestDataMode:

    @pytest.mark.parametrize('raw, expected', [
        ('demo', DataMode.DEMO),
        ('mixed', DataMode.MIXED),
        ('LIVE', DataMode.LIVE),
        (' live ', DataMode.LIVE),
        ('production', DataMode.DEMO),
        ('', DataMode.DEMO),
    ])
    def test_env_values(self, clean_env, raw, expected):
        clean_env.setenv('DATA_MODE', raw)

        assert Settings(_env_file=None).data_mode == expected

    def test_default_is_demo(self, clean_env):
        assert Settings(_env_file=None).data_mode == DataMode.DEMO

    def test_enum_instance_kept(self):
        assert Settings(_env_file=None, data_mode=DataMode.MIXED).data_mode == DataMode.MIXED


class TestCacheTtl:

    @pytest.mark.parametrize('raw, expected_ms', [
        ('120', 120_000),
        ('0.5', 500),
        ('0', 300_000),
        ('-5', 300_000),
        ('soon', 300_000),
        ('nan', 300_000),
        ('inf', 300_000),
    ])
    def test_env_values(self, clean_env, raw, expected_ms):
        clean_env.setenv('DATA_CACHE_TTL_SECONDS', raw)

        assert Settings(_env_file=None).cache_ttl_ms == expected_ms

    def test_default(self, clean_env):
        settings = Settings(_env_file=None)

        assert settings.data_cache_ttl_seconds == DEFAULT_CACHE_TTL_SECONDS
        assert settings.cache_ttl_ms == 300_000


class TestOptionalBackends:

    def test_blank_openai_key_disables_model(self, clean_env):
        clean_env.setenv('OPENAI_API_KEY', '   ')

        settings = Settings(_env_file=None)

        assert settings.openai_api_key is None
        assert settings.openai_enabled is False

    def test_openai_key_enables_model(self, clean_env):
        clean_env.setenv('OPENAI_API_KEY', 'sk-live')

        assert Settings(_env_file=None).openai_enabled is True

    def test_blank_database_url_is_none(self, clean_env):
        clean_env.setenv('DATABASE_URL', '')

        assert Settings(_env_file=None).database_url is None

    def test_request_log_file_default_and_blank(self, clean_env):
        assert Settings(_env_file=None).request_log_file == 'data/api_logs.jsonl'

        clean_env.setenv('REQUEST_LOG_FILE', ' ')

        assert Settings(_env_file=None).request_log_file is None

    def test_rate_window_in_ms(self):
        settings = Settings(_env_file=None, copilot_rate_window_seconds=30)

        assert settings.copilot_rate_window_ms == 30_000


class TestSingleton:

    def test_cached(self, clean_env):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
