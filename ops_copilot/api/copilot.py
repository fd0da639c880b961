"""
FastAPI router for POST /api/copilot.

The route is a thin adapter: the orchestrator does the work and returns a
CopilotOutcome; the route copies its audit fields onto request.state for the
request log middleware and renders the body and headers unchanged.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from ops_copilot.core.dependencies import OrchestratorDep
from ops_copilot.models import CopilotResponse, ErrorResponse
from ops_copilot.services.rate_limit import client_identity


router = APIRouter(prefix="/api", tags=["copilot"])


@router.post(
    "/copilot",
    response_model=None,
    responses={
        200: {"model": CopilotResponse},
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def ask_copilot(
    request: Request,
    orchestrator: OrchestratorDep,
    x_api_key: Annotated[Optional[str], Header()] = None,
) -> JSONResponse:
    """
    Answer an operations question with a structured recommendation payload.

    Body: {"query": str, "prompt_version"?: "v1" | "v2",
    "extra_data_points"?: [str]}. Requires the x-api-key header.
    """
    outcome = await orchestrator.handle(
        credential=x_api_key,
        client_ip=client_identity(request.headers),
        raw_body=await request.body(),
    )

    request.state.error_type = outcome.error_type.value if outcome.error_type else None
    request.state.model_used = outcome.model_used
    request.state.prompt_version = outcome.prompt_version.value
    request.state.schema_pass = outcome.schema_pass

    return JSONResponse(
        status_code=outcome.status_code,
        content=outcome.body,
        headers=outcome.headers,
    )
