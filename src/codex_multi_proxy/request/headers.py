"""Codex backend URL rewriting and header construction."""

from collections.abc import Mapping

import httpx


CODEX_RESPONSES_PATH = "/codex/responses"
RESPONSES_PATH = "/responses"

ACCOUNT_ID_HEADER = "chatgpt-account-id"
BETA_HEADER = "OpenAI-Beta"
BETA_RESPONSES = "responses=experimental"
ORIGINATOR_HEADER = "originator"
ORIGINATOR_CODEX = "codex_cli_rs"
CONVERSATION_ID_HEADER = "conversation_id"
SESSION_ID_HEADER = "session_id"

# Inbound headers that must not reach the upstream
HOP_BY_HOP_HEADERS = frozenset(
    {
        "host",
        "content-length",
        "connection",
        "keep-alive",
        "transfer-encoding",
        "upgrade",
        "accept-encoding",
        "authorization",
        "x-api-key",
        "cookie",
    }
)


def rewrite_url(url: str) -> str:
    """Point an OpenAI responses URL at the Codex backend.

    Only the first ``/responses`` occurrence is replaced.
    """
    return url.replace(RESPONSES_PATH, CODEX_RESPONSES_PATH, 1)


def build_codex_headers(
    inbound: Mapping[str, str] | None,
    account_id: str,
    access_token: str,
    prompt_cache_key: str | None = None,
) -> httpx.Headers:
    """Build account-scoped headers for one upstream dispatch.

    Args:
        inbound: Headers from the caller; hop-by-hop and credential headers are dropped
        account_id: ChatGPT account id of the selected account
        access_token: OAuth access token of the selected account
        prompt_cache_key: Caller's cache/session key, if any

    Returns:
        Headers for the outbound request
    """
    headers = httpx.Headers(
        {k: v for k, v in (inbound or {}).items() if k.lower() not in HOP_BY_HOP_HEADERS}
    )
    headers["Authorization"] = f"Bearer {access_token}"
    headers[ACCOUNT_ID_HEADER] = account_id
    headers[BETA_HEADER] = BETA_RESPONSES
    headers[ORIGINATOR_HEADER] = ORIGINATOR_CODEX

    # Conversation and session ids travel together or not at all
    if prompt_cache_key:
        headers[CONVERSATION_ID_HEADER] = prompt_cache_key
        headers[SESSION_ID_HEADER] = prompt_cache_key
    else:
        headers.pop(CONVERSATION_ID_HEADER, None)
        headers.pop(SESSION_ID_HEADER, None)

    headers["accept"] = "text/event-stream"
    headers["content-type"] = "application/json"
    return headers
