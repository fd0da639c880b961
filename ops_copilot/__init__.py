"""
Ops Copilot Backend Package.

FastAPI service layer for the restaurant/retail operations dashboard.
Provides revenue analytics, anomaly detection, short-horizon forecasting,
the live activity feed cache, and the AI-assisted copilot endpoint.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, database, and dependencies
    - models: Pydantic schemas and enums
    - services: Business logic services
    - prompts: Versioned copilot instruction templates
    - eval: Prompt evaluation runner (v1 vs v2 scoring reports)
"""

__version__ = "1.0.0"
