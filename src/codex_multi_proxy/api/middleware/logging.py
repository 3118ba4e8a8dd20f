"""Access logging middleware for structured HTTP request/response logging."""

import asyncio
import time
from typing import Any

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint


logger = structlog.get_logger(__name__)

# Upstream headers worth echoing into the access log
RATE_LIMIT_HEADER_PREFIXES = ("x-codex-", "x-ratelimit-")


def _extract_rate_limit_info(response: Response) -> dict[str, Any]:
    """Extract rate limit headers from response."""
    rate_limit_info: dict[str, Any] = {}
    for header_name, header_value in response.headers.items():
        header_lower = header_name.lower()
        if header_lower.startswith(RATE_LIMIT_HEADER_PREFIXES) or header_lower == "retry-after":
            rate_limit_info[header_lower.replace("-", "_")] = header_value
    return rate_limit_info


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Middleware for structured access logging with request/response details."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Process the request and log access details.

        Args:
            request: The incoming HTTP request
            call_next: The next middleware/handler in the chain

        Returns:
            The HTTP response
        """
        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        method = request.method
        path = str(request.url.path)
        query = str(request.url.query) if request.url.query else None

        response: Response | None = None
        error_message: str | None = None

        try:
            response = await call_next(request)
        except (Exception, asyncio.CancelledError) as e:
            error_message = str(e)
            raise
        finally:
            duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
            if response is not None:
                logger.info(
                    "request_complete",
                    method=method,
                    path=path,
                    query=query,
                    status_code=response.status_code,
                    duration_ms=duration_ms,
                    client_ip=client_ip,
                    **_extract_rate_limit_info(response),
                )
            else:
                logger.error(
                    "request_error",
                    method=method,
                    path=path,
                    query=query,
                    client_ip=client_ip,
                    duration_ms=duration_ms,
                    error_message=error_message or "No response generated",
                )

        return response
