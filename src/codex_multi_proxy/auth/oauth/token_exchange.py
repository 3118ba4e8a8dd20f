"""OAuth token exchange against the OpenAI auth server.

Both grants use the standard form-encoded body
(application/x-www-form-urlencoded), not JSON.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx
from structlog import get_logger

from codex_multi_proxy.exceptions import TokenExchangeError

from .constants import (
    OAUTH_AUTHORIZE_URL,
    OAUTH_CLIENT_ID,
    OAUTH_REDIRECT_URI,
    OAUTH_SCOPE,
    OAUTH_TOKEN_URL,
)


logger = get_logger(__name__)


@dataclass
class OAuthConfig:
    """OAuth configuration with sensible defaults."""

    authorize_url: str = OAUTH_AUTHORIZE_URL
    token_url: str = OAUTH_TOKEN_URL
    client_id: str = OAUTH_CLIENT_ID
    redirect_uri: str = OAUTH_REDIRECT_URI
    scope: str = OAUTH_SCOPE
    timeout: float = 30.0


@dataclass
class AuthorizationFlow:
    """PKCE material for one interactive login."""

    verifier: str
    challenge: str
    state: str
    url: str


def generate_pkce() -> tuple[str, str]:
    """Generate a PKCE code verifier and its S256 challenge."""
    verifier = base64.urlsafe_b64encode(secrets.token_bytes(32)).rstrip(b"=").decode()
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode()
    return verifier, challenge


def build_authorization_url(config: OAuthConfig | None = None) -> AuthorizationFlow:
    """Create the authorization URL the user opens to log in.

    Args:
        config: OAuth configuration (uses defaults if not provided)

    Returns:
        AuthorizationFlow carrying the verifier needed for the code exchange
    """
    if config is None:
        config = OAuthConfig()

    verifier, challenge = generate_pkce()
    state = secrets.token_hex(16)
    params = {
        "response_type": "code",
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "scope": config.scope,
        "code_challenge": challenge,
        "code_challenge_method": "S256",
        "state": state,
        "id_token_add_organizations": "true",
        "codex_cli_simplified_flow": "true",
        "originator": "codex_cli_rs",
    }
    url = f"{config.authorize_url}?{urlencode(params)}"
    return AuthorizationFlow(verifier=verifier, challenge=challenge, state=state, url=url)


def _handle_error_response(response: httpx.Response, operation: str) -> None:
    """Handle error response and raise TokenExchangeError."""
    error_text = response.text[:500]
    logger.error(
        f"oauth_{operation}_failed",
        status=response.status_code,
        error=error_text,
    )
    raise TokenExchangeError(
        f"{operation} failed: {error_text}",
        status_code=response.status_code,
        response_text=error_text,
    )


async def _post_form(
    data: dict[str, str],
    operation: str,
    config: OAuthConfig,
    client: httpx.AsyncClient | None,
) -> dict[str, Any]:
    headers = {
        "Content-Type": "application/x-www-form-urlencoded",
        "Accept": "application/json",
    }
    if client is None:
        async with httpx.AsyncClient() as own_client:
            response = await own_client.post(
                config.token_url, headers=headers, data=data, timeout=config.timeout
            )
    else:
        response = await client.post(
            config.token_url, headers=headers, data=data, timeout=config.timeout
        )

    if response.status_code != 200:
        _handle_error_response(response, operation)

    try:
        result = response.json()
    except ValueError as e:
        raise TokenExchangeError(
            f"{operation} returned invalid JSON",
            status_code=response.status_code,
            response_text=response.text[:500],
        ) from e
    if not isinstance(result, dict):
        raise TokenExchangeError(
            f"{operation} returned an unexpected payload",
            status_code=response.status_code,
        )
    return result


async def exchange_code_async(
    code: str,
    code_verifier: str,
    config: OAuthConfig | None = None,
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """Exchange authorization code for tokens.

    Args:
        code: Authorization code from the OAuth redirect
        code_verifier: PKCE code verifier used in the authorization request
        config: OAuth configuration (uses defaults if not provided)
        client: Optional shared HTTP client

    Returns:
        Token response dict with access_token, refresh_token, expires_in

    Raises:
        TokenExchangeError: If token exchange fails
    """
    if config is None:
        config = OAuthConfig()

    token_data = {
        "grant_type": "authorization_code",
        "client_id": config.client_id,
        "code": code,
        "code_verifier": code_verifier,
        "redirect_uri": config.redirect_uri,
    }
    return await _post_form(token_data, "token_exchange", config, client)


async def refresh_token_async(
    refresh_token: str,
    config: OAuthConfig | None = None,
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """Refresh access token.

    Args:
        refresh_token: Refresh token from previous token response
        config: OAuth configuration (uses defaults if not provided)
        client: Optional shared HTTP client

    Returns:
        Token response dict with new access_token, refresh_token, expires_in

    Raises:
        TokenExchangeError: If token refresh fails
    """
    if config is None:
        config = OAuthConfig()

    token_data = {
        "grant_type": "refresh_token",
        "client_id": config.client_id,
        "refresh_token": refresh_token,
    }
    return await _post_form(token_data, "token_refresh", config, client)
