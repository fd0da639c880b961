"""
Async PostgreSQL connection pool for the request audit log.

The service runs without a database by default. When DATABASE_URL is set, the
application lifespan opens one shared asyncpg pool here and the audit log
persists its entries through the helpers below.

Key Components:
- _pool: Process-wide pool, None until init_db() runs
- init_db(): Create the pool (idempotent)
- get_db_pool(): Pool accessor with lazy initialization
- close_db(): Close the pool at shutdown
- execute_query() / execute_command(): Acquire-run-release helpers

Connection Pool Configuration:
- min_size: 1
- max_size: 5
- command_timeout: 10 seconds (audit writes must stay cheap)

Usage:
    await init_db(settings.database_url)
    rows = await execute_query("SELECT * FROM api_logs WHERE ts >= $1", since_ms)
    await close_db()
"""

from typing import Any, List, Optional

import asyncpg
from asyncpg import Pool

from ops_copilot.core.config import get_settings


# =============================================================================
# Global Pool Singleton
# =============================================================================

_pool: Optional[Pool] = None


# =============================================================================
# Pool Lifecycle Functions
# =============================================================================

async def init_db(dsn: Optional[str] = None) -> Pool:
    """
    Initialize the connection pool.

    Calling it again returns the existing pool.

    Args:
        dsn: PostgreSQL DSN; defaults to settings.database_url.

    Returns:
        Pool: The asyncpg connection pool.

    Raises:
        ValueError: If no DSN is configured.
        asyncpg.PostgresError: If the connection fails.
        OSError: If the database host is unreachable.
    """
    global _pool

    if _pool is None:
        dsn = dsn or get_settings().database_url
        if not dsn:
            raise ValueError("DATABASE_URL is not configured")

        _pool = await asyncpg.create_pool(
            dsn=dsn,
            min_size=1,
            max_size=5,
            command_timeout=10,
        )

    return _pool


async def get_db_pool() -> Pool:
    """Get the connection pool, initializing it from settings if needed."""
    global _pool

    if _pool is None:
        await init_db()

    assert _pool is not None, "Pool should be initialized after init_db()"

    return _pool


async def close_db() -> None:
    """Close the pool gracefully. Safe to call when no pool exists."""
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None


# =============================================================================
# Query Execution Helpers
# =============================================================================

async def execute_query(query: str, *args: Any) -> List[asyncpg.Record]:
    """
    Run a query and return all rows.

    Args:
        query: SQL with $1, $2, ... placeholders.
        *args: Positional query parameters.

    Returns:
        List[asyncpg.Record]: Matching rows.
    """
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        return await conn.fetch(query, *args)


async def execute_command(query: str, *args: Any) -> str:
    """
    Run a command (DDL/INSERT/UPDATE/DELETE) and return asyncpg's status string.

    Without args the command may contain several statements.
    """
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        return await conn.execute(query, *args)
