"""Settings configuration for the Codex multi-account proxy."""

import contextlib
import os
import tomllib
from pathlib import Path
from typing import Any

import orjson
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from codex_multi_proxy.config.discovery import find_toml_config_file
from codex_multi_proxy.exceptions import ConfigurationError
from codex_multi_proxy.rotation.constants import ACCOUNTS_PATH_ENV

from .codex import CodexSettings, RequestSettings
from .oauth import OAuthSettings
from .rotation import RotationSettings
from .server import ServerSettings


__all__ = [
    "CONFIG_OVERRIDES_ENV",
    "Settings",
    "get_settings",
    "validate_accounts_path",
]

CONFIG_OVERRIDES_ENV = "CODEX_MULTI_PROXY_CONFIG_OVERRIDES"


def _coerce_settings(value: Any, settings_class: type) -> Any:
    """Coerce value to settings class instance.

    Handles: None → default, dict → instance, passthrough existing instances.
    """
    if value is None:
        return settings_class()
    if isinstance(value, settings_class):
        return value
    if isinstance(value, dict):
        return settings_class(**value)
    if hasattr(value, "model_dump"):
        return settings_class(**value.model_dump())
    return value


def validate_accounts_path(value: str) -> str:
    """Accept only absolute or home-relative account file locations."""
    if not (value.startswith("~") or Path(value).is_absolute()):
        raise ValueError(
            f"{ACCOUNTS_PATH_ENV} must be an absolute or ~-prefixed path, got {value!r}"
        )
    return value


class Settings(BaseSettings):
    """
    Configuration settings for the Codex multi-account proxy.

    Settings are loaded from environment variables, .env files, and TOML configuration files.
    Environment variables take precedence over .env file values.
    TOML configuration files are loaded in the following order:
    1. .codex_multi_proxy.toml in current directory
    2. config.toml in user config directory/codex-multi-proxy/ (platform-specific)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    server: ServerSettings = Field(
        default_factory=ServerSettings,
        description="Server configuration settings",
    )

    codex: CodexSettings = Field(
        default_factory=CodexSettings,
        description="Upstream Codex backend settings",
    )

    rotation: RotationSettings = Field(
        default_factory=RotationSettings,
        description="Account pool and rotation settings",
    )

    oauth: OAuthSettings = Field(
        default_factory=OAuthSettings,
        description="OAuth client settings",
    )

    request: RequestSettings = Field(
        default_factory=RequestSettings,
        description="Outbound request shaping defaults",
    )

    @field_validator("server", mode="before")
    @classmethod
    def validate_server(cls, v: Any) -> Any:
        return _coerce_settings(v, ServerSettings)

    @field_validator("codex", mode="before")
    @classmethod
    def validate_codex(cls, v: Any) -> Any:
        return _coerce_settings(v, CodexSettings)

    @field_validator("rotation", mode="before")
    @classmethod
    def validate_rotation(cls, v: Any) -> Any:
        return _coerce_settings(v, RotationSettings)

    @field_validator("oauth", mode="before")
    @classmethod
    def validate_oauth(cls, v: Any) -> Any:
        return _coerce_settings(v, OAuthSettings)

    @field_validator("request", mode="before")
    @classmethod
    def validate_request(cls, v: Any) -> Any:
        return _coerce_settings(v, RequestSettings)

    @model_validator(mode="after")
    def apply_accounts_path_env(self) -> "Settings":
        """Let CODEX_PROXY_ACCOUNTS_PATH override the configured accounts file."""
        env_path = os.environ.get(ACCOUNTS_PATH_ENV)
        if env_path:
            self.rotation.accounts_path = validate_accounts_path(env_path)
        return self

    @property
    def server_url(self) -> str:
        """Get the complete server URL."""
        return f"http://{self.server.host}:{self.server.port}"

    @property
    def accounts_path(self) -> Path:
        return Path(self.rotation.accounts_path).expanduser()

    @property
    def host_auth_path(self) -> Path:
        return Path(self.rotation.host_auth_path).expanduser()

    @classmethod
    def load_toml_config(cls, toml_path: Path) -> dict[str, Any]:
        """Load configuration from a TOML file.

        Args:
            toml_path: Path to the TOML configuration file

        Returns:
            dict: Configuration data from the TOML file

        Raises:
            ValueError: If the TOML file is invalid or cannot be read
        """
        try:
            with toml_path.open("rb") as f:
                return tomllib.load(f)
        except OSError as e:
            raise ValueError(f"Cannot read TOML config file {toml_path}: {e}") from e
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML syntax in {toml_path}: {e}") from e

    @classmethod
    def from_config(
        cls, config_path: Path | str | None = None, **kwargs: Any
    ) -> "Settings":
        """Create Settings instance from configuration file.

        Args:
            config_path: Path to configuration file. Can be:
                - None: Auto-discover config file or use CONFIG_FILE env var
                - Path or str: Use this specific config file
            **kwargs: Additional keyword arguments to override config values

        Returns:
            Settings: Configured Settings instance
        """
        if config_path is None:
            config_path_env = os.environ.get("CONFIG_FILE")
            if config_path_env:
                config_path = Path(config_path_env)

        if isinstance(config_path, str):
            config_path = Path(config_path)

        if config_path is None:
            config_path = find_toml_config_file()

        config_data: dict[str, Any] = {}
        if config_path and config_path.exists():
            if config_path.suffix.lower() != ".toml":
                raise ValueError(
                    f"Unsupported config file format: {config_path.suffix}. "
                    "Only TOML (.toml) files are supported."
                )
            config_data = cls.load_toml_config(config_path)

        # Section overrides merge into file sections rather than replacing them
        merged_config = dict(config_data)
        for key, value in kwargs.items():
            if isinstance(value, dict) and isinstance(merged_config.get(key), dict):
                merged_config[key] = {**merged_config[key], **value}
            else:
                merged_config[key] = value

        return cls(**merged_config)


def get_settings(config_path: Path | str | None = None) -> Settings:
    """Get settings with configuration file support.

    CLI overrides passed to a spawned server arrive as JSON in
    CODEX_MULTI_PROXY_CONFIG_OVERRIDES.

    Raises:
        ConfigurationError: If the configuration cannot be loaded
    """
    try:
        cli_overrides: dict[str, Any] = {}
        cli_overrides_json = os.environ.get(CONFIG_OVERRIDES_ENV)
        if cli_overrides_json:
            with contextlib.suppress(ValueError):
                cli_overrides = orjson.loads(cli_overrides_json)

        return Settings.from_config(config_path=config_path, **cli_overrides)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Configuration error: {e}") from e
