"""Constants for the rotation module.

This module centralizes configuration values used across the rotation package.
All durations are in milliseconds unless the name says otherwise.
"""

from pathlib import Path


# Only supported accounts file schema
STORE_SCHEMA_VERSION = 1

# Default accounts file path
DEFAULT_ACCOUNTS_PATH = Path("~/.codex-multi-proxy/accounts.json").expanduser()

# Env var overriding the accounts path
ACCOUNTS_PATH_ENV = "CODEX_PROXY_ACCOUNTS_PATH"

# Cooldown and rate-limit windows
AUTH_FAILURE_COOLDOWN_MS = 30_000
NETWORK_ERROR_COOLDOWN_MS = 30_000
DEFAULT_RETRY_AFTER_MS = 60_000

# Minimum gap between two notifications about the same account
NOTIFY_DEBOUNCE_MS = 30_000

MAX_ACCOUNTS = 10

# Label shows this many trailing characters of the account id
ACCOUNT_LABEL_SUFFIX_LENGTH = 6
