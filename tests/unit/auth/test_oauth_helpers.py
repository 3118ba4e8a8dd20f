"""Tests for access token decoding and PKCE authorization URLs."""

import base64
import hashlib
from collections.abc import Callable
from urllib.parse import parse_qs, urlparse

import pytest

from codex_multi_proxy.auth.jwt import decode_identity, extract_account_id
from codex_multi_proxy.auth.oauth.token_exchange import (
    OAuthConfig,
    build_authorization_url,
    generate_pkce,
)


@pytest.mark.unit
def test_extract_account_id(token_factory: Callable[..., str]) -> None:
    assert extract_account_id(token_factory("acct-42")) == "acct-42"
    assert extract_account_id(token_factory()) is None


@pytest.mark.unit
@pytest.mark.parametrize("token", [None, "", "not-a-jwt", "a.b.c"])
def test_undecodable_tokens(token: str | None) -> None:
    assert decode_identity(token) is None
    assert extract_account_id(token) is None


@pytest.mark.unit
def test_pkce_challenge_matches_verifier() -> None:
    verifier, challenge = generate_pkce()

    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    expected = base64.urlsafe_b64encode(digest).rstrip(b"=").decode()
    assert challenge == expected
    assert "=" not in verifier


@pytest.mark.unit
def test_authorization_url() -> None:
    config = OAuthConfig(authorize_url="https://auth.test/oauth/authorize")

    flow = build_authorization_url(config)

    parsed = urlparse(flow.url)
    params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == config.authorize_url
    assert params["response_type"] == "code"
    assert params["client_id"] == config.client_id
    assert params["redirect_uri"] == config.redirect_uri
    assert params["code_challenge"] == flow.challenge
    assert params["code_challenge_method"] == "S256"
    assert params["state"] == flow.state
