"""
Settings and environment management module for the Ops Copilot FastAPI backend.

This module provides centralized configuration management using pydantic-settings,
which automatically loads settings from environment variables and .env files.

Key Features:
- Environment variable validation and type coercion
- Sensible defaults for local development (demo mode, no model backend)
- Singleton pattern via @lru_cache for efficient access
- Lenient parsing for the data mode and cache TTL: bad values fall back to
  defaults instead of preventing startup

Environment Variables:
- DATA_MODE: demo | mixed | live (default: demo)
- DATA_CACHE_TTL_SECONDS: Activity cache freshness window (default: 300)
- LIVE_ACTIVITY_URL: Upstream activity feed URL
- COPILOT_API_KEY: Client credential expected in the x-api-key header
- OPENAI_API_KEY: Model backend key; absent means the copilot runs in demo mode
- COPILOT_MODEL_CHEAP / COPILOT_MODEL_QUALITY: Model names for the two tiers
- DATABASE_URL: Optional PostgreSQL DSN for the request audit log
- REQUEST_LOG_FILE: JSON Lines audit log used without a database; blank keeps
  the audit log in memory only (default: data/api_logs.jsonl)

Usage:
    from ops_copilot.core.config import get_settings

    settings = get_settings()
    ttl_ms = settings.cache_ttl_ms
    if settings.openai_enabled:
        ...
"""

from functools import lru_cache
from typing import Any, List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ops_copilot.models.enums import DataMode


DEFAULT_CACHE_TTL_SECONDS: float = 300.0

DEFAULT_LIVE_ACTIVITY_URL: str = "https://jsonplaceholder.typicode.com/todos"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        data_mode: Which data the analytics are computed from (demo, mixed, live).
        data_cache_ttl_seconds: Freshness window of the live activity cache.
        live_activity_url: Upstream activity feed endpoint.
        live_activity_timeout_seconds: Bounded timeout for the upstream fetch.
        live_activity_max_items: Cap on the number of rows kept from the feed.
        activity_cache_dir: Directory holding the durable cache mirror.
        copilot_api_key: Shared secret clients send in the x-api-key header.
        openai_api_key: Model backend API key. None forces demo copilot mode.
        copilot_model_cheap: Model used for short, descriptive questions.
        copilot_model_quality: Model used for diagnostic questions.
        copilot_max_output_tokens: Output-size bound for each model call.
        copilot_model_timeout_seconds: Wall-clock bound for each model call.
        copilot_rate_limit: Requests allowed per client per window.
        copilot_rate_window_seconds: Fixed rate-limit window length.
        database_url: Optional PostgreSQL DSN for persisting the audit log.
        request_log_max_entries: Bound for the in-memory audit log.
        request_log_file: JSON Lines file backing the audit log when no database
            is configured. None keeps the log in memory.
        log_level: Root logging level.
        cors_origins: Dashboard origins allowed by the CORS middleware.
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=False,
    )

    # =========================================================================
    # Data Sources
    # =========================================================================

    data_mode: DataMode = DataMode.DEMO

    data_cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS

    live_activity_url: str = DEFAULT_LIVE_ACTIVITY_URL

    # Single-digit seconds: a hung upstream must never hold a request open
    live_activity_timeout_seconds: float = 7.5

    live_activity_max_items: int = 220

    activity_cache_dir: str = 'data'

    # =========================================================================
    # Copilot
    # =========================================================================

    copilot_api_key: str = 'dev_local_key'

    openai_api_key: Optional[str] = None

    copilot_model_cheap: str = 'gpt-4o-mini'

    copilot_model_quality: str = 'gpt-4o'

    copilot_max_output_tokens: int = 700

    copilot_model_timeout_seconds: float = 30.0

    copilot_rate_limit: int = 10

    copilot_rate_window_seconds: int = 60

    # =========================================================================
    # Audit Log / Observability
    # =========================================================================

    database_url: Optional[str] = None

    request_log_max_entries: int = 50_000

    request_log_file: Optional[str] = 'data/api_logs.jsonl'

    log_level: str = 'INFO'

    cors_origins: List[str] = [
        'http://localhost:3000',
        'http://127.0.0.1:3000',
    ]

    @field_validator('data_mode', mode='before')
    @classmethod
    def _normalize_data_mode(cls, value: Any) -> DataMode:
        """Unknown or empty data modes fall back to demo."""
        if isinstance(value, DataMode):
            return value
        raw = str(value or '').strip().lower()
        try:
            return DataMode(raw)
        except ValueError:
            return DataMode.DEMO

    @field_validator('data_cache_ttl_seconds', mode='before')
    @classmethod
    def _normalize_cache_ttl(cls, value: Any) -> float:
        """Non-numeric or non-positive TTLs fall back to five minutes."""
        try:
            parsed = float(value)
        except (TypeError, ValueError):
            return DEFAULT_CACHE_TTL_SECONDS
        if parsed != parsed or parsed <= 0 or parsed == float('inf'):
            return DEFAULT_CACHE_TTL_SECONDS
        return parsed

    @field_validator('openai_api_key', 'database_url', 'request_log_file', mode='before')
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def cache_ttl_ms(self) -> int:
        return int(round(self.data_cache_ttl_seconds * 1000))

    @property
    def openai_enabled(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def copilot_rate_window_ms(self) -> int:
        return self.copilot_rate_window_seconds * 1000


@lru_cache()
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Returns:
        Settings: The application settings instance with all configuration values.

    Note:
        To refresh settings in tests, clear the cache:
        >>> get_settings.cache_clear()
    """
    return Settings()
