"""
Core infrastructure package for the Ops Copilot backend.

Provides:
- Configuration management via pydantic-settings
- Optional async PostgreSQL connectivity via asyncpg (request audit log)
- FastAPI dependency injection utilities (import from
  ops_copilot.core.dependencies directly; they depend on the services layer)

Usage:
    from ops_copilot.core import get_settings, init_db, close_db
"""

from ops_copilot.core.config import Settings, get_settings
from ops_copilot.core.database import close_db, get_db_pool, init_db


__all__ = [
    "Settings",
    "get_settings",
    "init_db",
    "close_db",
    "get_db_pool",
]
