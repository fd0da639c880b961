"""
SQL statements for the optional PostgreSQL persistence layer.

Submodules:
    request_log_queries: DDL, insert and 24h window select for api_logs.
"""

from ops_copilot.sql.request_log_queries import (
    CREATE_API_LOGS_TABLE,
    INSERT_API_LOG,
    SELECT_API_LOGS_SINCE,
)

__all__ = [
    "CREATE_API_LOGS_TABLE",
    "INSERT_API_LOG",
    "SELECT_API_LOGS_SINCE",
]
