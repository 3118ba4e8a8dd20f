"""Tests for reading and writing the host credential file."""

import json
from pathlib import Path

import pytest

from codex_multi_proxy.rotation.host_auth import (
    HostCredential,
    load_host_credential,
    save_host_credential,
)


@pytest.mark.unit
def test_load_oauth_credential(tmp_path: Path) -> None:
    path = tmp_path / "auth.json"
    path.write_text(
        json.dumps({"type": "oauth", "access": "a", "refresh": "r", "expires": 123})
    )

    assert load_host_credential(path) == HostCredential(refresh="r", access="a", expires=123)


@pytest.mark.unit
@pytest.mark.parametrize(
    "content",
    [
        "not json",
        "[]",
        json.dumps({"type": "api", "key": "sk-test"}),
        json.dumps({"type": "oauth", "refresh": ""}),
    ],
)
def test_unusable_documents_are_ignored(tmp_path: Path, content: str) -> None:
    path = tmp_path / "auth.json"
    path.write_text(content)

    assert load_host_credential(path) is None


@pytest.mark.unit
def test_missing_file(tmp_path: Path) -> None:
    assert load_host_credential(tmp_path / "missing.json") is None


@pytest.mark.unit
def test_save_writes_oauth_document(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "auth.json"

    save_host_credential(HostCredential(refresh="r2", access="a2", expires=9), path)

    assert json.loads(path.read_text()) == {
        "type": "oauth",
        "access": "a2",
        "refresh": "r2",
        "expires": 9,
    }
