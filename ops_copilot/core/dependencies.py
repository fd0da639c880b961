"""
FastAPI dependency injection for the Ops Copilot backend.

Shared process state is built once in the application lifespan and parked on
app.state. These dependencies hand it to endpoint handlers, so tests can build
an app with their own settings, fake model client, or mocked clock without
patching module globals.

Key Dependencies Provided:
- SettingsDep: the Settings the app was created with
- DataProviderDep: AnalyticsDataProvider for the configured data mode
- OrchestratorDep: CopilotOrchestrator
- RequestLogDep: audit log store (in-memory or PostgreSQL)

Usage:
    @router.get("/revenue")
    async def revenue(provider: DataProviderDep, settings: SettingsDep):
        series, source = await provider.get_revenue_series()
"""

from typing import Annotated

from fastapi import Depends, Request

from ops_copilot.core.config import Settings
from ops_copilot.services.copilot import CopilotOrchestrator
from ops_copilot.services.data_sources import AnalyticsDataProvider
from ops_copilot.services.request_log import RequestLogStore


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency(request: Request) -> Settings:
    """
    Return the Settings instance the application was created with.

    Note:
        This reads app.state rather than calling get_settings() so that an app
        built by create_app(settings) serves exactly those settings.
    """
    return request.app.state.settings


# =============================================================================
# Service Dependencies
# =============================================================================

def get_data_provider(request: Request) -> AnalyticsDataProvider:
    return request.app.state.data_provider


def get_orchestrator(request: Request) -> CopilotOrchestrator:
    return request.app.state.orchestrator


def get_request_log(request: Request) -> RequestLogStore:
    return request.app.state.request_log


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]

DataProviderDep = Annotated[AnalyticsDataProvider, Depends(get_data_provider)]

OrchestratorDep = Annotated[CopilotOrchestrator, Depends(get_orchestrator)]

RequestLogDep = Annotated[RequestLogStore, Depends(get_request_log)]
