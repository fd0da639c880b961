"""
FastAPI application entry point for the Ops Copilot API.

create_app() wires configuration, shared process state, CORS, the request
audit middleware, error rendering and the API routers. The module-level `app`
is what uvicorn serves; tests call create_app() with their own settings and
fakes.

Shared state on app.state (built in the lifespan):
- settings
- rate_limiter: copilot fixed-window limiter
- activity_cache: upstream activity feed cache
- data_provider: data-mode aware revenue/activity source
- model_client: OpenAI adapter, or None in demo mode
- orchestrator: copilot request orchestrator
- request_log: audit log store (PostgreSQL when DATABASE_URL is set, else the
  REQUEST_LOG_FILE JSON Lines file)
"""

import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ops_copilot import __version__
from ops_copilot.api import api_router
from ops_copilot.core.config import Settings, get_settings
from ops_copilot.core.database import close_db, init_db
from ops_copilot.models import ErrorType
from ops_copilot.services.copilot import CopilotOrchestrator
from ops_copilot.services.data_sources import AnalyticsDataProvider
from ops_copilot.services.live_activity import ActivityCache
from ops_copilot.services.model_client import CopilotModelClient, OpenAICopilotClient
from ops_copilot.services.rate_limit import RateLimiter
from ops_copilot.services.request_log import (
    ApiLogEntry,
    FileRequestLogStore,
    InMemoryRequestLogStore,
    PostgresRequestLogStore,
    RequestLogStore,
    now_ms,
)


logger = logging.getLogger(__name__)

AUDITED_PATH_PREFIX: str = "/api/"


async def _open_request_log(settings: Settings) -> RequestLogStore:
    """PostgreSQL audit log when configured and reachable, else the log file, else memory."""
    if settings.database_url:
        try:
            await init_db(settings.database_url)
            store = PostgresRequestLogStore()
            await store.ensure_schema()
            logger.info("Request audit log persisted to PostgreSQL")
            return store
        except Exception as e:
            # Continue startup on the file or in-memory audit log
            logger.error(f"Failed to initialize database, falling back to local audit log: {e}")

    if settings.request_log_file:
        logger.info(f"Request audit log persisted to {settings.request_log_file}")
        return FileRequestLogStore(
            Path(settings.request_log_file), max_entries=settings.request_log_max_entries
        )

    logger.warning("Request audit log kept in memory; health metrics reset on restart")
    return InMemoryRequestLogStore(max_entries=settings.request_log_max_entries)


def create_app(
    settings: Optional[Settings] = None,
    model_client: Optional[CopilotModelClient] = None,
    activity_cache: Optional[ActivityCache] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Configuration; defaults to the environment-loaded singleton.
        model_client: Model backend override. Without one, an OpenAI client is
            created when OPENAI_API_KEY is set, otherwise the copilot runs in
            demo mode.
        activity_cache: Activity cache override (tests inject a mock transport
            and clock).

    Returns:
        FastAPI: The configured application.
    """
    settings = settings or get_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        On startup:
            - Build shared state (limiter, cache, provider, model client)
            - Open the audit log store

        On shutdown:
            - Close the database pool if one was opened
        """
        logger.info(
            f"Ops Copilot API starting (data_mode={settings.data_mode.value}, "
            f"openai_configured={settings.openai_enabled})"
        )

        cache = activity_cache or ActivityCache(
            cache_dir=settings.activity_cache_dir,
            url=settings.live_activity_url,
            timeout_seconds=settings.live_activity_timeout_seconds,
        )
        client = model_client
        if client is None and settings.openai_enabled:
            client = OpenAICopilotClient(
                api_key=settings.openai_api_key,
                timeout_seconds=settings.copilot_model_timeout_seconds,
            )

        app.state.rate_limiter = RateLimiter()
        app.state.activity_cache = cache
        app.state.data_provider = AnalyticsDataProvider(settings, cache)
        app.state.model_client = client
        app.state.orchestrator = CopilotOrchestrator(
            settings=settings,
            rate_limiter=app.state.rate_limiter,
            data_provider=app.state.data_provider,
            model_client=client,
        )
        app.state.request_log = await _open_request_log(settings)

        yield

        logger.info("Ops Copilot API shutting down")
        if isinstance(app.state.request_log, PostgresRequestLogStore):
            try:
                await close_db()
                logger.info("Database connection pool closed")
            except Exception as e:
                logger.error(f"Error closing database pool: {e}")

    app = FastAPI(
        title="Ops Copilot API",
        version=__version__,
        description=(
            "Operational analytics (revenue, anomalies, forecast, activity) "
            "and a schema-constrained AI copilot with deterministic fallback."
        ),
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def audit_requests(request: Request, call_next):
        """Record one audit log entry per API request."""
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            path = request.url.path
            if path.startswith(AUDITED_PATH_PREFIX):
                error_type = getattr(request.state, "error_type", None)
                if error_type is None and status_code >= 500:
                    error_type = ErrorType.SERVER_ERROR.value
                entry = ApiLogEntry(
                    ts=now_ms(),
                    endpoint=path,
                    status_code=status_code,
                    latency_ms=int(round((time.perf_counter() - started) * 1000)),
                    error_type=error_type,
                    model_used=getattr(request.state, "model_used", None),
                    prompt_version=getattr(request.state, "prompt_version", None),
                    schema_pass=getattr(request.state, "schema_pass", None),
                )
                store = getattr(request.app.state, "request_log", None)
                if store is not None:
                    await store.record(entry)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": "Invalid request parameters."})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled error on {request.url.path}", exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error."})

    app.include_router(api_router)

    @app.get("/health")
    async def health_check():
        """Liveness probe for monitoring and load balancers."""
        return {"status": "healthy"}

    @app.get("/")
    async def root():
        return {
            "name": "Ops Copilot API",
            "version": __version__,
            "docs": "/docs",
            "openapi": "/openapi.json",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ops_copilot.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
