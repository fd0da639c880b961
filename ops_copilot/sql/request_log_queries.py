"""
Request audit log queries (table api_logs).

One row per HTTP request. ts is epoch milliseconds so the rolling 24h window
is a plain integer comparison on an indexed column.
"""


CREATE_API_LOGS_TABLE: str = """
    CREATE TABLE IF NOT EXISTS api_logs (
        id BIGSERIAL PRIMARY KEY,
        ts BIGINT NOT NULL,
        endpoint TEXT NOT NULL,
        status_code INTEGER NOT NULL,
        latency_ms INTEGER NOT NULL,
        error_type TEXT,
        model_used TEXT,
        prompt_version TEXT,
        schema_pass BOOLEAN
    );
    CREATE INDEX IF NOT EXISTS api_logs_ts_idx ON api_logs (ts);
    CREATE INDEX IF NOT EXISTS api_logs_endpoint_idx ON api_logs (endpoint);
"""


INSERT_API_LOG: str = """
    INSERT INTO api_logs (
        ts,
        endpoint,
        status_code,
        latency_ms,
        error_type,
        model_used,
        prompt_version,
        schema_pass
    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
"""


SELECT_API_LOGS_SINCE: str = """
    SELECT
        ts,
        endpoint,
        status_code,
        latency_ms,
        error_type,
        model_used,
        prompt_version,
        schema_pass
    FROM api_logs
    WHERE ts >= $1
    ORDER BY ts ASC
"""
