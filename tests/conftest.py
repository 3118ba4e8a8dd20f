"""Shared fixtures for the test suite."""

from collections.abc import Callable, Iterator
from pathlib import Path

import jwt
import pytest

from codex_multi_proxy.config.settings import CONFIG_OVERRIDES_ENV, Settings
from codex_multi_proxy.rotation.constants import ACCOUNTS_PATH_ENV


def make_access_token(account_id: str | None = None, **claims: object) -> str:
    """HS256 JWT carrying the ChatGPT account claim; the proxy never verifies it."""
    payload: dict[str, object] = {"sub": "user", **claims}
    if account_id is not None:
        payload["https://api.openai.com/auth"] = {"chatgpt_account_id": account_id}
    return jwt.encode(payload, "test-signing-key-that-is-32-bytes-long", algorithm="HS256")


@pytest.fixture
def token_factory() -> Callable[..., str]:
    return make_access_token


@pytest.fixture(autouse=True)
def isolated_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Iterator[None]:
    """Keep tests away from the user's config, accounts and .env files."""
    for name in ("CONFIG_FILE", CONFIG_OVERRIDES_ENV, ACCOUNTS_PATH_ENV):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    yield


@pytest.fixture
def accounts_path(tmp_path: Path) -> Path:
    return tmp_path / "state" / "accounts.json"


@pytest.fixture
def host_auth_path(tmp_path: Path) -> Path:
    return tmp_path / "state" / "auth.json"


@pytest.fixture
def settings(accounts_path: Path, host_auth_path: Path) -> Settings:
    """Settings pointing every file at the test's temp directory."""
    return Settings(
        rotation={
            "accounts_path": str(accounts_path),
            "host_auth_path": str(host_auth_path),
        },
        codex={"base_url": "https://codex.test/backend-api"},
        oauth={"token_url": "https://auth.test/oauth/token"},
    )
