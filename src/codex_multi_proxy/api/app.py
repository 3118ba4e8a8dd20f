"""FastAPI application factory for the Codex multi-account proxy."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI
from structlog import get_logger

from codex_multi_proxy import __version__
from codex_multi_proxy.api.lifecycle import (
    LifecycleComponent,
    execute_shutdown_sequence,
    execute_startup_sequence,
    log_server_start,
)
from codex_multi_proxy.api.middleware.errors import setup_error_handlers
from codex_multi_proxy.api.middleware.logging import AccessLogMiddleware
from codex_multi_proxy.api.routes.proxy import router as proxy_router
from codex_multi_proxy.api.routes.status import router as status_router
from codex_multi_proxy.config.settings import Settings, get_settings
from codex_multi_proxy.core.logging import setup_logging
from codex_multi_proxy.rotation.startup import (
    initialize_account_pool_startup,
    shutdown_account_pool,
)
from codex_multi_proxy.services.startup import (
    initialize_http_client_startup,
    initialize_orchestrator_startup,
    shutdown_http_client,
)


logger = get_logger(__name__)


# Startup runs top to bottom, shutdown bottom to top
LIFECYCLE_COMPONENTS: list[LifecycleComponent] = [
    {
        "name": "Account Pool",
        "startup": initialize_account_pool_startup,
        "shutdown": shutdown_account_pool,
    },
    {
        "name": "HTTP Client",
        "startup": initialize_http_client_startup,
        "shutdown": shutdown_http_client,
    },
    {
        "name": "Request Orchestrator",
        "startup": initialize_orchestrator_startup,
        "shutdown": None,  # Holds no resources of its own
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager using component-based approach."""
    settings: Settings = app.state.settings

    log_server_start(settings)
    await execute_startup_sequence(LIFECYCLE_COMPONENTS, app, settings)

    yield

    logger.debug("server_stop")
    await execute_shutdown_sequence(LIFECYCLE_COMPONENTS, app)


def create_app(
    settings: Settings | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Optional settings override. If None, uses get_settings().
        http_transport: Optional transport for the upstream client

    Returns:
        Configured FastAPI application instance.
    """
    if settings is None:
        settings = get_settings()

    # Reload mode re-imports the app; keep the first logging setup
    if not structlog.is_configured():
        setup_logging(
            json_logs=settings.server.json_logs,
            log_level_name=settings.server.log_level,
            log_file=settings.server.log_file,
        )

    app = FastAPI(
        title="Codex Multi-Account Proxy",
        description="OpenAI Responses API proxy that rotates ChatGPT OAuth accounts",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.http_transport = http_transport

    setup_error_handlers(app)
    app.add_middleware(AccessLogMiddleware)

    app.include_router(status_router, tags=["status"])
    app.include_router(proxy_router, tags=["proxy"])

    return app


def get_app() -> FastAPI:
    """Get the FastAPI application instance.

    Used as the uvicorn factory by ``codex-multi-proxy serve``.
    """
    return create_app()
