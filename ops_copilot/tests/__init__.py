'''
Ops Copilot Test Suite

Test Modules:
-------------
- test_anomalies.py: rolling z-score detection, cold start, flat baselines
- test_forecast.py: linear extrapolation, calendar continuity
- test_schema_validation.py: copilot answer contract gate
- test_rate_limit.py: fixed-window limiter and client identity
- test_live_activity.py: activity cache state machine, upstream mapping,
  revenue derivation
- test_data_sources.py: data-mode provenance tags and record sorting
- test_fallback.py: deterministic copilot answers
- test_model_client.py: Responses API adapter and output parser
- test_copilot.py: copilot orchestration states
- test_request_log.py: audit log stores (memory, JSON Lines, PostgreSQL) and
  health metrics
- test_config.py: lenient settings parsing
- test_api.py: HTTP surface through FastAPI's TestClient
- test_eval.py: prompt evaluation scoring, runner and reports

Running Tests:
--------------
    pip install -e ".[test]"
    pytest -v
'''
