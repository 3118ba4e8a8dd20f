"""End-to-end tests for the FastAPI app with a mocked upstream."""

import json
from collections.abc import Callable, Iterator
from pathlib import Path
from urllib.parse import parse_qs

import httpx
import pytest
from fastapi.testclient import TestClient

from codex_multi_proxy.api.app import create_app
from codex_multi_proxy.config.settings import Settings
from codex_multi_proxy.rotation.storage import (
    AccountRecord,
    AccountStore,
    load_store,
    save_store,
)


UPSTREAM_URL = "https://codex.test/backend-api/codex/responses"
TOKEN_URL = "https://auth.test/oauth/token"

COMPLETED_STREAM = (
    b'data: {"type":"response.created","response":{"id":"r1","status":"in_progress"}}\n\n'
    b'data: {"type":"response.completed","response":{"id":"r1","status":"completed"}}\n\n'
)


class FakeBackend:
    """Token endpoint plus Codex backend.

    Refresh token ``refresh-<id>`` mints an access token for account ``<id>``;
    accounts listed in ``rate_limited`` answer 429.
    """

    def __init__(self, token_factory: Callable[..., str]) -> None:
        self.token_factory = token_factory
        self.rate_limited: set[str] = set()
        self.dispatched: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == TOKEN_URL:
            form = parse_qs(request.content.decode())
            account_id = form["refresh_token"][0].removeprefix("refresh-")
            return httpx.Response(
                200,
                json={
                    "access_token": self.token_factory(account_id),
                    "refresh_token": f"refresh-{account_id}",
                    "expires_in": 3600,
                },
            )

        assert str(request.url) == UPSTREAM_URL
        account_id = request.headers["chatgpt-account-id"]
        self.dispatched.append(account_id)
        if account_id in self.rate_limited:
            return httpx.Response(
                429,
                headers={"retry-after": "30"},
                json={"error": {"code": "rate_limit_exceeded"}},
            )
        return httpx.Response(
            200, content=COMPLETED_STREAM, headers={"content-type": "text/event-stream"}
        )


@pytest.fixture
def backend(token_factory: Callable[..., str]) -> FakeBackend:
    return FakeBackend(token_factory)


@pytest.fixture
def seed_accounts(accounts_path: Path) -> Callable[..., None]:
    def seed(*account_ids: str) -> None:
        save_store(
            AccountStore(
                accounts=[
                    AccountRecord(refresh_token=f"refresh-{a}", account_id=a, added_at=1)
                    for a in account_ids
                ]
            ),
            accounts_path,
        )

    return seed


@pytest.fixture
def client(settings: Settings, backend: FakeBackend) -> Iterator[TestClient]:
    app = create_app(settings, http_transport=httpx.MockTransport(backend))
    with TestClient(app) as test_client:
        yield test_client


@pytest.mark.unit
def test_health_degraded_without_accounts(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert data["availableAccounts"] == 0


@pytest.mark.unit
def test_empty_pool_answers_rate_limit_error(client: TestClient) -> None:
    response = client.post("/v1/responses", json={"model": "gpt-5"})

    assert response.status_code == 429
    assert response.json() == {
        "error": {
            "type": "rate_limit_error",
            "message": "No Codex accounts configured. Run `codex-multi-proxy auth add`.",
        }
    }
    assert "retry-after" not in response.headers


@pytest.mark.unit
def test_pool_status(
    seed_accounts: Callable[..., None], settings: Settings, backend: FakeBackend
) -> None:
    """Status reports every account with 1-based positions and camelCase keys."""
    seed_accounts("acct-a", "acct-b")
    app = create_app(settings, http_transport=httpx.MockTransport(backend))

    with TestClient(app) as test_client:
        response = test_client.get("/accounts/status")

    assert response.status_code == 200
    data = response.json()
    assert data["totalAccounts"] == 2
    assert data["availableAccounts"] == 2
    assert data["activeIndex"] == 1
    assert data["minWaitMs"] == 0
    first = data["accounts"][0]
    assert first["index"] == 1
    assert first["label"] == "Account 1 (acct-a)"
    assert first["active"] is True
    assert first["state"] == "available"
    assert first["rateLimitedUntil"] is None
    assert "lastUsed" in first


@pytest.mark.unit
def test_activate_account(
    seed_accounts: Callable[..., None],
    settings: Settings,
    backend: FakeBackend,
    accounts_path: Path,
) -> None:
    seed_accounts("acct-a", "acct-b")
    app = create_app(settings, http_transport=httpx.MockTransport(backend))

    with TestClient(app) as test_client:
        response = test_client.post("/accounts/2/activate")
        missing = test_client.post("/accounts/5/activate")

    assert response.status_code == 200
    assert response.json()["activeIndex"] == 2
    store = load_store(accounts_path)
    assert store is not None and store.active_index == 1

    assert missing.status_code == 404
    assert missing.json() == {
        "error": {"type": "http_error", "message": "Account 5 not found"}
    }


@pytest.mark.unit
def test_responses_returns_json_for_non_streaming_caller(
    seed_accounts: Callable[..., None], settings: Settings, backend: FakeBackend
) -> None:
    seed_accounts("acct-a")
    app = create_app(settings, http_transport=httpx.MockTransport(backend))

    with TestClient(app) as test_client:
        response = test_client.post("/v1/responses", json={"model": "gpt-5.1", "input": []})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/json")
    assert response.json() == {"id": "r1", "status": "completed"}
    assert backend.dispatched == ["acct-a"]


@pytest.mark.unit
def test_responses_streams_for_streaming_caller(
    seed_accounts: Callable[..., None], settings: Settings, backend: FakeBackend
) -> None:
    seed_accounts("acct-a")
    app = create_app(settings, http_transport=httpx.MockTransport(backend))

    with TestClient(app) as test_client:
        response = test_client.post("/responses", json={"stream": True})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.content == COMPLETED_STREAM


@pytest.mark.unit
def test_rate_limit_rotation_and_exhaustion(
    seed_accounts: Callable[..., None],
    settings: Settings,
    backend: FakeBackend,
    accounts_path: Path,
) -> None:
    """One limited account rotates; all limited accounts surface a 429.

    Verifies:
    - The first call succeeds on the second account
    - Once both are limited, the caller gets rate_limit_error with Retry-After
    - Rotation state is on disk
    """
    seed_accounts("acct-a", "acct-b")
    backend.rate_limited.add("acct-a")
    app = create_app(settings, http_transport=httpx.MockTransport(backend))

    with TestClient(app) as test_client:
        first = test_client.post("/v1/responses", json={})
        backend.rate_limited.add("acct-b")
        second = test_client.post("/v1/responses", json={})

    assert first.status_code == 200
    assert backend.dispatched == ["acct-a", "acct-b", "acct-b"]

    assert second.status_code == 429
    error = second.json()["error"]
    assert error["type"] == "rate_limit_error"
    assert error["message"].startswith("All 2 account(s) are rate-limited")
    assert second.headers["retry-after"] == "30"

    on_disk = json.loads(accounts_path.read_text())
    assert all("rateLimitResetTime" in account for account in on_disk["accounts"])
