"""Tests for settings loading from TOML, environment and CLI overrides."""

from pathlib import Path

import pytest

from codex_multi_proxy.config.settings import (
    CONFIG_OVERRIDES_ENV,
    Settings,
    get_settings,
    validate_accounts_path,
)
from codex_multi_proxy.exceptions import ConfigurationError
from codex_multi_proxy.rotation.constants import (
    ACCOUNTS_PATH_ENV,
    AUTH_FAILURE_COOLDOWN_MS,
)


@pytest.mark.unit
def test_defaults() -> None:
    settings = Settings()

    assert settings.server.port == 8787
    assert settings.server_url == "http://127.0.0.1:8787"
    assert settings.rotation.auth_failure_cooldown_ms == AUTH_FAILURE_COOLDOWN_MS
    assert settings.accounts_path == Path("~/.codex-multi-proxy/accounts.json").expanduser()
    assert settings.codex.base_url == "https://chatgpt.com/backend-api"


@pytest.mark.unit
def test_from_config_merges_overrides_into_sections(tmp_path: Path) -> None:
    config = tmp_path / "config.toml"
    config.write_text(
        '[server]\nhost = "0.0.0.0"\nport = 9000\n\n[rotation]\nmax_accounts = 3\n'
    )

    settings = Settings.from_config(config, server={"port": 9100})

    assert settings.server.host == "0.0.0.0"
    assert settings.server.port == 9100
    assert settings.rotation.max_accounts == 3


@pytest.mark.unit
def test_discovers_config_in_working_directory(tmp_path: Path) -> None:
    # The shared fixture runs every test from tmp_path
    (tmp_path / ".codex_multi_proxy.toml").write_text("[server]\nport = 9200\n")

    assert Settings.from_config().server.port == 9200


@pytest.mark.unit
def test_rejects_non_toml_config(tmp_path: Path) -> None:
    config = tmp_path / "config.json"
    config.write_text("{}")

    with pytest.raises(ValueError, match="Only TOML"):
        Settings.from_config(config)


@pytest.mark.unit
def test_invalid_log_level() -> None:
    with pytest.raises(ValueError):
        Settings(server={"log_level": "LOUD"})


@pytest.mark.unit
def test_accounts_path_env_override(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    target = tmp_path / "pool.json"
    monkeypatch.setenv(ACCOUNTS_PATH_ENV, str(target))

    assert Settings().accounts_path == target


@pytest.mark.unit
@pytest.mark.parametrize("value", ["relative/accounts.json", "accounts.json"])
def test_relative_accounts_path_rejected(value: str) -> None:
    with pytest.raises(ValueError):
        validate_accounts_path(value)


@pytest.mark.unit
def test_home_relative_accounts_path_accepted() -> None:
    assert validate_accounts_path("~/pool.json") == "~/pool.json"


@pytest.mark.unit
def test_get_settings_reads_cli_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(CONFIG_OVERRIDES_ENV, '{"server": {"port": 9300}}')

    assert get_settings().server.port == 9300


@pytest.mark.unit
def test_get_settings_wraps_errors(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    broken = tmp_path / "broken.toml"
    broken.write_text("[server\n")
    monkeypatch.setenv("CONFIG_FILE", str(broken))

    with pytest.raises(ConfigurationError, match="Invalid TOML"):
        get_settings()
