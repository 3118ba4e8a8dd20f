"""Exception hierarchy for the Codex multi-account proxy.

All exceptions use proper exception chaining with the `from` keyword.
Error types use StrEnum so handlers can serialize them directly.
"""

from enum import StrEnum
from typing import Any

from starlette import status


class ErrorType(StrEnum):
    """Error type codes for API responses."""

    AUTHENTICATION = "authentication_error"
    RATE_LIMIT = "rate_limit_error"
    SERVICE_UNAVAILABLE = "service_unavailable_error"
    INTERNAL_SERVER = "internal_server_error"


# ============================================================================
# Base Exceptions
# ============================================================================


class CodexProxyError(Exception):
    """Base exception for all proxy errors.

    Supports HTTP status codes and structured error details.
    """

    def __init__(
        self,
        message: str,
        *,
        error_type: ErrorType | str = ErrorType.INTERNAL_SERVER,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if isinstance(error_type, str) and not isinstance(error_type, ErrorType):
            try:
                self.error_type = ErrorType(error_type)
            except ValueError:
                self.error_type = error_type  # type: ignore[assignment]
        else:
            self.error_type = error_type
        self.status_code = status_code
        self.details = details or {}


# ============================================================================
# API Errors (Client-facing)
# ============================================================================


class AuthenticationError(CodexProxyError):
    """Authentication error (401)."""

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(
            message,
            error_type=ErrorType.AUTHENTICATION,
            status_code=status.HTTP_401_UNAUTHORIZED,
        )


class RateLimitError(CodexProxyError):
    """Rate limit error (429)."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            error_type=ErrorType.RATE_LIMIT,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            details=details,
        )


class ServiceUnavailableError(CodexProxyError):
    """Service unavailable error (503)."""

    def __init__(self, message: str = "Service temporarily unavailable") -> None:
        super().__init__(
            message,
            error_type=ErrorType.SERVICE_UNAVAILABLE,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )


# ============================================================================
# Rotation Errors
# ============================================================================


class NoAccountsConfiguredError(RateLimitError):
    """No account is known to the pool at all."""

    def __init__(
        self,
        message: str = "No Codex accounts configured. Run `codex-multi-proxy auth add`.",
    ) -> None:
        super().__init__(message)


class AccountsExhaustedError(RateLimitError):
    """Every account was tried or is blocked for this request."""

    def __init__(self, message: str, *, retry_after_ms: int = 0) -> None:
        super().__init__(message, details={"retry_after_ms": retry_after_ms})
        self.retry_after_ms = retry_after_ms


class CredentialStoreError(CodexProxyError):
    """Reading or writing the accounts file failed."""

    pass


class ConfigurationError(CodexProxyError):
    """Raised when configuration loading or validation fails."""

    pass


# ============================================================================
# OAuth Errors
# ============================================================================


class OAuthError(AuthenticationError):
    """Base OAuth error."""

    pass


class TokenExchangeError(OAuthError):
    """Token exchange or refresh was rejected by the OAuth server."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        response_text: str | None = None,
    ):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        self.response_text = response_text
