"""Account rotation settings."""

from pydantic import BaseModel, Field

from codex_multi_proxy.rotation.constants import (
    AUTH_FAILURE_COOLDOWN_MS,
    DEFAULT_RETRY_AFTER_MS,
    MAX_ACCOUNTS,
    NETWORK_ERROR_COOLDOWN_MS,
    NOTIFY_DEBOUNCE_MS,
)


class RotationSettings(BaseModel):
    """Account pool, cooldown and notification timing."""

    accounts_path: str = Field(
        default="~/.codex-multi-proxy/accounts.json",
        description="Location of the accounts file",
    )
    host_auth_path: str = Field(
        default="~/.codex-multi-proxy/auth.json",
        description="Host-provided active OAuth credential",
    )
    auth_failure_cooldown_ms: int = Field(default=AUTH_FAILURE_COOLDOWN_MS, ge=0)
    network_error_cooldown_ms: int = Field(default=NETWORK_ERROR_COOLDOWN_MS, ge=0)
    default_retry_after_ms: int = Field(default=DEFAULT_RETRY_AFTER_MS, ge=0)
    notify_debounce_ms: int = Field(default=NOTIFY_DEBOUNCE_MS, ge=0)
    max_accounts: int = Field(default=MAX_ACCOUNTS, ge=1)
