"""Codex responses endpoint."""

from typing import cast

from fastapi import APIRouter, Request
from starlette.responses import Response
from structlog import get_logger

from codex_multi_proxy.exceptions import ServiceUnavailableError
from codex_multi_proxy.services.orchestrator import RequestOrchestrator


logger = get_logger(__name__)

router = APIRouter(tags=["proxy"])


def get_orchestrator_from_request(request: Request) -> RequestOrchestrator:
    """Get the request orchestrator from app state.

    Raises:
        ServiceUnavailableError: If startup did not complete
    """
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise ServiceUnavailableError("Request orchestrator not initialized")
    return cast(RequestOrchestrator, orchestrator)


@router.post("/v1/responses", response_model=None)
@router.post("/responses", response_model=None)
async def create_response(request: Request) -> Response:
    """Forward an OpenAI Responses API call through the account pool.

    Streams back to callers that sent ``"stream": true``; everyone else
    receives the final response object as JSON.
    """
    orchestrator = get_orchestrator_from_request(request)
    body = await request.body()
    return await orchestrator.handle(body, request.headers)
