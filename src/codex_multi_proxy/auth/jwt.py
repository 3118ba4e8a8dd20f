"""Decoding of OAuth access tokens.

Tokens are never verified here: the upstream verifies them on every call,
the proxy only needs the identity claims to build account-scoped headers.
"""

from typing import Any

import jwt
from structlog import get_logger

from codex_multi_proxy.auth.oauth.constants import (
    JWT_ACCOUNT_ID_FIELD,
    JWT_AUTH_CLAIM,
)


logger = get_logger(__name__)


def decode_identity(access_token: str | None) -> dict[str, Any] | None:
    """Decode the claims of an access token without verifying its signature.

    Args:
        access_token: JWT access token

    Returns:
        Claims dict, or None when the token is missing or not a JWT
    """
    if not access_token:
        return None
    try:
        claims = jwt.decode(access_token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        logger.debug("access_token_decode_failed", error=str(e))
        return None
    return claims if isinstance(claims, dict) else None


def extract_account_id(access_token: str | None) -> str | None:
    """Extract the ChatGPT account id from an access token.

    Args:
        access_token: JWT access token

    Returns:
        Account id, or None if the claim is absent
    """
    claims = decode_identity(access_token)
    if not claims:
        return None
    auth_claim = claims.get(JWT_AUTH_CLAIM)
    if not isinstance(auth_claim, dict):
        return None
    account_id = auth_claim.get(JWT_ACCOUNT_ID_FIELD)
    if isinstance(account_id, str) and account_id:
        return account_id
    return None
