"""Error handling for the Codex proxy API.

Provides unified error handling for all CodexProxyError subclasses
using their built-in error_type and status_code attributes.
"""

import math

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette import status
from starlette.exceptions import HTTPException as StarletteHTTPException
from structlog import get_logger

from codex_multi_proxy.exceptions import AccountsExhaustedError, CodexProxyError


logger = get_logger(__name__)


def _get_client_ip(request: Request) -> str:
    """Get client IP from request."""
    return request.client.host if request.client else "unknown"


def _build_error_response(
    status_code: int,
    error_type: str,
    message: str,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build standardized error response."""
    return JSONResponse(
        status_code=status_code,
        content={"error": {"type": error_type, "message": message}},
        headers=headers,
    )


def retry_after_header(retry_after_ms: int) -> dict[str, str]:
    """Retry-After in whole seconds, rounded up; empty when no wait is known."""
    if retry_after_ms <= 0:
        return {}
    return {"Retry-After": str(math.ceil(retry_after_ms / 1000))}


def setup_error_handlers(app: FastAPI) -> None:
    """Setup error handlers for the FastAPI application."""
    logger.debug("error_handlers_setup_start")

    @app.exception_handler(CodexProxyError)
    async def codex_proxy_error_handler(
        request: Request, exc: CodexProxyError
    ) -> JSONResponse:
        """Handle all CodexProxyError subclasses using their built-in attributes."""
        error_type = str(exc.error_type)

        log_kwargs = {
            "error_type": error_type,
            "error_message": exc.message,
            "status_code": exc.status_code,
            "request_method": request.method,
            "request_url": str(request.url.path),
        }
        if exc.status_code in (401, 403, 429):
            log_kwargs["client_ip"] = _get_client_ip(request)

        if exc.status_code < 500:
            logger.warning(type(exc).__name__, **log_kwargs)
        else:
            logger.error(type(exc).__name__, **log_kwargs)

        headers = None
        if isinstance(exc, AccountsExhaustedError):
            headers = retry_after_header(exc.retry_after_ms)

        return _build_error_response(
            exc.status_code, error_type, exc.message, headers=headers
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        """Handle FastAPI HTTP exceptions."""
        log_kwargs = {
            "error_type": f"http_{exc.status_code}",
            "error_message": exc.detail,
            "status_code": exc.status_code,
            "request_method": request.method,
            "request_url": str(request.url.path),
        }

        if exc.status_code == 404:
            logger.debug("HTTP 404", **log_kwargs)
        else:
            logger.warning("HTTP exception", **log_kwargs)

        return _build_error_response(exc.status_code, "http_error", str(exc.detail))

    @app.exception_handler(StarletteHTTPException)
    async def starlette_http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Handle Starlette HTTP exceptions."""
        log_kwargs = {
            "error_type": f"starlette_http_{exc.status_code}",
            "error_message": exc.detail,
            "status_code": exc.status_code,
            "request_method": request.method,
            "request_url": str(request.url.path),
        }

        if exc.status_code == 404:
            logger.debug("Starlette HTTP 404", **log_kwargs)
        else:
            logger.warning("Starlette HTTP exception", **log_kwargs)

        return _build_error_response(exc.status_code, "http_error", str(exc.detail))

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle all other unhandled exceptions."""
        logger.error(
            "Unhandled exception",
            error_type="unhandled_exception",
            error_message=str(exc),
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_method=request.method,
            request_url=str(request.url.path),
            exc_info=True,
        )

        return _build_error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "internal_server_error",
            "An internal server error occurred",
        )

    logger.debug("error_handlers_setup_completed")
