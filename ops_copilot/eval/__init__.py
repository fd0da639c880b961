"""
Copilot prompt evaluation.

Replays a JSON Lines file of questions against a running /api/copilot and
scores each answer, so the v1 and v2 prompt templates can be compared on the
same questions.

Usage:
    python -m ops_copilot.eval.run_eval --base-url http://127.0.0.1:8000
"""
