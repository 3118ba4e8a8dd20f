"""Startup and shutdown helpers for the upstream client and orchestrator."""

import httpx
from fastapi import FastAPI
from structlog import get_logger

from codex_multi_proxy.config.settings import Settings
from codex_multi_proxy.services.instructions import create_instructions_provider
from codex_multi_proxy.services.notifier import LoggingNotifier
from codex_multi_proxy.services.orchestrator import RequestOrchestrator


logger = get_logger(__name__)


def build_http_client(
    settings: Settings, transport: httpx.AsyncBaseTransport | None = None
) -> httpx.AsyncClient:
    """Create the shared client used for upstream dispatch and token refresh."""
    timeout = httpx.Timeout(
        settings.codex.request_timeout_seconds,
        connect=settings.codex.connect_timeout_seconds,
    )
    return httpx.AsyncClient(timeout=timeout, transport=transport)


async def initialize_http_client_startup(app: FastAPI, settings: Settings) -> None:
    """Open the shared HTTP client.

    Args:
        app: FastAPI application
        settings: Application settings
    """
    transport = getattr(app.state, "http_transport", None)
    app.state.http_client = build_http_client(settings, transport)
    logger.debug(
        "http_client_initialized",
        request_timeout=settings.codex.request_timeout_seconds,
        connect_timeout=settings.codex.connect_timeout_seconds,
    )


async def shutdown_http_client(app: FastAPI) -> None:
    client: httpx.AsyncClient | None = getattr(app.state, "http_client", None)
    if client is not None:
        await client.aclose()
        logger.debug("http_client_closed")


async def initialize_orchestrator_startup(app: FastAPI, settings: Settings) -> None:
    """Wire the request orchestrator from the pool and client.

    Args:
        app: FastAPI application
        settings: Application settings
    """
    pool = getattr(app.state, "account_pool", None)
    client = getattr(app.state, "http_client", None)
    if pool is None or client is None:
        raise RuntimeError("Account pool and HTTP client must start first")

    instructions_dir = settings.request.instructions_dir
    app.state.orchestrator = RequestOrchestrator(
        pool,
        client,
        settings,
        notifier=LoggingNotifier(),
        instructions=create_instructions_provider(instructions_dir),
        host_credential=getattr(app.state, "host_credential", None),
        host_auth_path=settings.host_auth_path,
    )
    logger.debug("orchestrator_initialized", upstream_url=app.state.orchestrator.upstream_url)
