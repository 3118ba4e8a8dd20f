"""Token lifecycle: expiry checks and refresh/exchange result handling.

Refresh never raises into the caller. Transport failures are retried with
exponential backoff; an OAuth rejection or an exhausted retry budget comes
back as a TokenRefreshFailure.
"""

from dataclasses import dataclass
from typing import Any

import httpx
from structlog import get_logger
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from codex_multi_proxy.auth.oauth.constants import DEFAULT_TOKEN_EXPIRY_SECONDS
from codex_multi_proxy.auth.oauth.token_exchange import (
    OAuthConfig,
    exchange_code_async,
    refresh_token_async,
)
from codex_multi_proxy.exceptions import TokenExchangeError
from codex_multi_proxy.rotation.accounts import ManagedAccount, now_ms


logger = get_logger(__name__)

MAX_REFRESH_ATTEMPTS = 3


@dataclass
class TokenRefreshSuccess:
    """Freshly minted credentials."""

    access: str
    refresh: str
    expires: int  # Unix timestamp in milliseconds


@dataclass
class TokenRefreshFailure:
    """Refresh or exchange did not produce usable credentials."""

    reason: str
    status_code: int | None = None
    invalid_grant: bool = False


TokenResult = TokenRefreshSuccess | TokenRefreshFailure


def is_expired(account: ManagedAccount, now: int | None = None) -> bool:
    """True if no access token is held or its expiry is at or before now.

    No grace skew: the upstream-issued expiry is treated as exact.
    """
    if not account.access_token or account.expires_at is None:
        return True
    return account.expires_at <= (now if now is not None else now_ms())


def tokens_from_response(
    data: dict[str, Any],
    previous_refresh: str | None = None,
    now: int | None = None,
) -> TokenResult:
    """Convert a token endpoint payload into a TokenResult.

    A response without a new refresh token keeps ``previous_refresh``.
    """
    access = data.get("access_token")
    refresh = data.get("refresh_token") or previous_refresh
    if not isinstance(access, str) or not access:
        return TokenRefreshFailure(reason="token response missing access_token")
    if not isinstance(refresh, str) or not refresh:
        return TokenRefreshFailure(reason="token response missing refresh_token")

    expires_in = data.get("expires_in")
    if isinstance(expires_in, bool) or not isinstance(expires_in, int | float):
        expires_in = DEFAULT_TOKEN_EXPIRY_SECONDS
    now = now if now is not None else now_ms()
    return TokenRefreshSuccess(
        access=access,
        refresh=refresh,
        expires=now + int(expires_in * 1000),
    )


def _failure_from_exchange_error(e: TokenExchangeError) -> TokenRefreshFailure:
    response_text = (e.response_text or "").lower()
    return TokenRefreshFailure(
        reason=e.message,
        status_code=e.status_code,
        invalid_grant="invalid_grant" in response_text,
    )


async def refresh(
    refresh_token: str,
    *,
    config: OAuthConfig | None = None,
    client: httpx.AsyncClient | None = None,
    max_attempts: int = MAX_REFRESH_ATTEMPTS,
    wait_min_seconds: float = 1,
    wait_max_seconds: float = 8,
) -> TokenResult:
    """Exchange a refresh token for a new access/refresh pair.

    Args:
        refresh_token: Long-lived refresh credential
        config: OAuth configuration
        client: Optional shared HTTP client
        max_attempts: Attempts when the transport fails
        wait_min_seconds: Lower bound of the backoff between attempts
        wait_max_seconds: Upper bound of the backoff between attempts

    Returns:
        TokenRefreshSuccess or TokenRefreshFailure
    """

    def before_sleep_log(retry_state: Any) -> None:
        logger.warning(
            "token_refresh_retry",
            attempt=retry_state.attempt_number,
            max_attempts=max_attempts,
            error=str(retry_state.outcome.exception())
            if retry_state.outcome
            else None,
        )

    try:
        async for attempt in AsyncRetrying(
            wait=wait_exponential(multiplier=1, min=wait_min_seconds, max=wait_max_seconds),
            stop=stop_after_attempt(max_attempts),
            retry=retry_if_exception_type(httpx.TransportError),
            before_sleep=before_sleep_log,
        ):
            with attempt:
                data = await refresh_token_async(refresh_token, config, client)
    except RetryError as e:
        last = e.last_attempt.exception()
        logger.error("token_refresh_transport_failed", error=str(last))
        return TokenRefreshFailure(reason=f"transport error: {last}")
    except TokenExchangeError as e:
        failure = _failure_from_exchange_error(e)
        logger.error(
            "token_refresh_rejected",
            status_code=failure.status_code,
            invalid_grant=failure.invalid_grant,
        )
        return failure

    result = tokens_from_response(data, previous_refresh=refresh_token)
    if isinstance(result, TokenRefreshFailure):
        logger.error("token_refresh_invalid_response", reason=result.reason)
    else:
        logger.debug("token_refresh_success", expires=result.expires)
    return result


async def exchange_code(
    code: str,
    verifier: str,
    *,
    config: OAuthConfig | None = None,
    client: httpx.AsyncClient | None = None,
) -> TokenResult:
    """Exchange an authorization code (PKCE) for tokens."""
    try:
        data = await exchange_code_async(code, verifier, config, client)
    except TokenExchangeError as e:
        return _failure_from_exchange_error(e)
    except httpx.TransportError as e:
        logger.error("token_exchange_transport_failed", error=str(e))
        return TokenRefreshFailure(reason=f"transport error: {e}")
    return tokens_from_response(data)
