"""Credential store for multi-account rotation.

Handles loading, validating, deduplicating and persisting the accounts file
(~/.codex-multi-proxy/accounts.json by default). A file that cannot be
trusted as a whole is treated as "no accounts yet", never partially read.
"""

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import orjson
from structlog import get_logger

from codex_multi_proxy.exceptions import CredentialStoreError
from codex_multi_proxy.rotation.constants import (
    DEFAULT_ACCOUNTS_PATH,
    STORE_SCHEMA_VERSION,
)


logger = get_logger(__name__)


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _optional_int(value: Any) -> int | None:
    # bool is an int subclass but never a timestamp
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if not math.isfinite(value):
        return None
    return int(value)


@dataclass
class AccountRecord:
    """Durable subset of an account, as stored on disk.

    All timestamps are Unix epoch milliseconds.
    """

    refresh_token: str
    added_at: int = 0
    last_used: int = 0
    account_id: str | None = None
    last_switch_reason: str | None = None
    rate_limit_reset_time: int | None = None
    cooling_down_until: int | None = None
    cooldown_reason: str | None = None

    @property
    def dedup_key(self) -> str:
        """Account id when known, otherwise the refresh token."""
        return self.account_id or self.refresh_token

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {}
        if self.account_id is not None:
            data["accountId"] = self.account_id
        data["refreshToken"] = self.refresh_token
        data["addedAt"] = self.added_at
        data["lastUsed"] = self.last_used
        optional = {
            "lastSwitchReason": self.last_switch_reason,
            "rateLimitResetTime": self.rate_limit_reset_time,
            "coolingDownUntil": self.cooling_down_until,
            "cooldownReason": self.cooldown_reason,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AccountRecord":
        """Create from dictionary loaded from JSON.

        Caller guarantees that ``refreshToken`` is a string.
        """
        return cls(
            refresh_token=data["refreshToken"],
            added_at=_optional_int(data.get("addedAt")) or 0,
            last_used=_optional_int(data.get("lastUsed")) or 0,
            account_id=_optional_str(data.get("accountId")),
            last_switch_reason=_optional_str(data.get("lastSwitchReason")),
            rate_limit_reset_time=_optional_int(data.get("rateLimitResetTime")),
            cooling_down_until=_optional_int(data.get("coolingDownUntil")),
            cooldown_reason=_optional_str(data.get("cooldownReason")),
        )


@dataclass
class AccountStore:
    """Represents the accounts file structure."""

    accounts: list[AccountRecord] = field(default_factory=list)
    active_index: int = 0
    version: int = STORE_SCHEMA_VERSION

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "version": self.version,
            "accounts": [record.to_dict() for record in self.accounts],
            "activeIndex": self.active_index,
        }


def _select_newest(current: AccountRecord, candidate: AccountRecord) -> AccountRecord:
    if candidate.last_used > current.last_used:
        return candidate
    if candidate.last_used < current.last_used:
        return current
    return candidate if candidate.added_at >= current.added_at else current


def deduplicate_records(records: list[AccountRecord]) -> list[AccountRecord]:
    """Collapse records sharing a dedup key, keeping the most recently used.

    Ties on ``last_used`` go to the greater ``added_at``; the later record wins
    a full tie. Survivors keep their original relative order. Records with
    an empty key are dropped.

    Args:
        records: Records in file order

    Returns:
        New list with one record per dedup key
    """
    key_to_index: dict[str, int] = {}
    for i, record in enumerate(records):
        key = record.dedup_key
        if not key:
            continue
        existing_index = key_to_index.get(key)
        if existing_index is None:
            key_to_index[key] = i
            continue
        newest = _select_newest(records[existing_index], record)
        key_to_index[key] = i if newest is record else existing_index

    keep = set(key_to_index.values())
    return [record for i, record in enumerate(records) if i in keep]


def _clamp_index(index: int, length: int) -> int:
    if length <= 0:
        return 0
    return max(0, min(index, length - 1))


def _extract_active_key(raw_accounts: list[Any], index: int) -> str | None:
    if index >= len(raw_accounts):
        return None
    candidate = raw_accounts[index]
    if not isinstance(candidate, dict):
        return None
    return _optional_str(candidate.get("accountId")) or _optional_str(
        candidate.get("refreshToken")
    )


def normalize_store(data: Any) -> AccountStore | None:
    """Validate raw JSON data and heal duplicates.

    The active account is tracked by identity across the dedup pass: if it
    survives, ``active_index`` follows it to its new position; if it was
    removed as a duplicate, the original index is clamped into bounds.

    Args:
        data: Parsed JSON document

    Returns:
        Normalized store, or None when the document cannot be trusted
    """
    if not isinstance(data, dict):
        logger.warning("accounts_store_invalid_format", reason="not_an_object")
        return None

    version = data.get("version")
    if isinstance(version, bool) or version != STORE_SCHEMA_VERSION:
        logger.warning("accounts_store_unknown_version", version=version)
        return None

    raw_accounts = data.get("accounts")
    if not isinstance(raw_accounts, list):
        logger.warning("accounts_store_invalid_format", reason="accounts_not_a_list")
        return None

    raw_active = _optional_int(data.get("activeIndex"))
    raw_active_index = _clamp_index(raw_active or 0, len(raw_accounts))
    active_key = _extract_active_key(raw_accounts, raw_active_index)

    valid = [
        AccountRecord.from_dict(entry)
        for entry in raw_accounts
        if isinstance(entry, dict) and isinstance(entry.get("refreshToken"), str)
    ]
    records = deduplicate_records(valid)

    if len(records) != len(raw_accounts):
        logger.info(
            "accounts_store_healed",
            raw_count=len(raw_accounts),
            kept_count=len(records),
        )

    active_index = 0
    if records:
        mapped = None
        if active_key:
            mapped = next(
                (i for i, r in enumerate(records) if r.dedup_key == active_key),
                None,
            )
        active_index = (
            mapped
            if mapped is not None
            else _clamp_index(raw_active_index, len(records))
        )

    return AccountStore(accounts=records, active_index=active_index)


def load_store(path: Path | None = None) -> AccountStore | None:
    """Load the accounts file.

    Fails closed: a missing, unreadable, malformed or wrong-version file
    yields None.

    Args:
        path: Path to accounts.json. Defaults to ~/.codex-multi-proxy/accounts.json

    Returns:
        AccountStore, or None
    """
    path = Path(path or DEFAULT_ACCOUNTS_PATH).expanduser()

    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        logger.debug("accounts_file_not_found", path=str(path))
        return None
    except OSError as e:
        logger.error("accounts_load_failed", path=str(path), error=str(e))
        return None

    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        logger.error("accounts_file_corrupt", path=str(path), error=str(e))
        return None

    store = normalize_store(data)
    if store is not None:
        logger.debug("accounts_loaded", path=str(path), count=len(store.accounts))
    return store


def save_store(store: AccountStore, path: Path | None = None) -> None:
    """Write the accounts file.

    Parent directories are created; the file is written to a temp sibling
    and renamed over the target.

    Args:
        store: Store to save
        path: Destination path

    Raises:
        CredentialStoreError: If the file system rejects the write
    """
    path = Path(path or DEFAULT_ACCOUNTS_PATH).expanduser()

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_suffix(path.suffix + ".tmp")
        temp_path.write_bytes(orjson.dumps(store.to_dict(), option=orjson.OPT_INDENT_2))
        temp_path.replace(path)
    except OSError as e:
        logger.error("accounts_save_failed", path=str(path), error=str(e))
        raise CredentialStoreError(f"Failed to save accounts file {path}: {e}") from e

    logger.debug(
        "accounts_saved",
        path=str(path),
        count=len(store.accounts),
        active_index=store.active_index,
    )


def clear_store(path: Path | None = None) -> bool:
    """Delete the accounts file.

    Returns:
        True if a file was removed
    """
    path = Path(path or DEFAULT_ACCOUNTS_PATH).expanduser()
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.error("accounts_clear_failed", path=str(path), error=str(e))
        raise CredentialStoreError(f"Failed to remove accounts file {path}: {e}") from e
    logger.info("accounts_cleared", path=str(path))
    return True
