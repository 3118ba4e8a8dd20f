"""Account pool for managing multiple Codex accounts.

Provides round-robin account selection with rate-limit and cooldown
tracking. Expired windows are cleared lazily whenever an account is
examined; there is no background timer.

The pool is a session object owned by the application. Callers hold
``pool.lock`` around read-modify-write sequences on account state.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path

from structlog import get_logger

from codex_multi_proxy.auth.jwt import extract_account_id
from codex_multi_proxy.exceptions import CredentialStoreError
from codex_multi_proxy.rotation.accounts import (
    AccountState,
    CooldownReason,
    ManagedAccount,
    SwitchReason,
    now_ms,
)
from codex_multi_proxy.rotation.constants import (
    DEFAULT_ACCOUNTS_PATH,
    NOTIFY_DEBOUNCE_MS,
)
from codex_multi_proxy.rotation.host_auth import HostCredential
from codex_multi_proxy.rotation.storage import AccountStore, load_store, save_store


logger = get_logger(__name__)


@dataclass
class AccountSnapshot:
    """Read-only view of one account for status output."""

    index: int
    label: str
    state: AccountState
    active: bool
    added_at: int
    last_used: int
    last_switch_reason: str | None
    rate_limited_until: int | None
    cooling_down_until: int | None
    cooldown_reason: str | None
    cooldown: str | None


class AccountPool:
    """Manages a pool of Codex accounts with round-robin rotation.

    Features:
    - Sticky active account, round-robin over available accounts when it is blocked
    - Independent rate-limit and cooldown windows per account
    - Notification debounce per account
    - Persistence of rotation state after every decision
    """

    def __init__(
        self,
        accounts: list[ManagedAccount] | None = None,
        *,
        active_index: int = 0,
        accounts_path: Path | None = None,
        notify_debounce_ms: int = NOTIFY_DEBOUNCE_MS,
    ):
        """Initialize account pool.

        Args:
            accounts: Accounts in pool order; indices are reassigned densely
            active_index: Index of the active account
            accounts_path: Path to accounts.json used by save()
            notify_debounce_ms: Minimum gap between notifications for one account
        """
        self._accounts: list[ManagedAccount] = list(accounts or [])
        self._reindex()
        self._accounts_path = accounts_path or DEFAULT_ACCOUNTS_PATH
        self._notify_debounce_ms = notify_debounce_ms
        if self._accounts:
            self._active_index = max(0, active_index) % len(self._accounts)
        else:
            self._active_index = -1
        self._cursor = max(0, self._active_index)
        self._last_notified_index = -1
        self._last_notified_at = 0
        self.lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_store(
        cls,
        store: AccountStore | None,
        host: HostCredential | None = None,
        *,
        accounts_path: Path | None = None,
        notify_debounce_ms: int = NOTIFY_DEBOUNCE_MS,
        now: int | None = None,
    ) -> "AccountPool":
        """Build the pool from the stored accounts and the host credential.

        A stored account matches the host credential by account id (decoded
        from the host's access token) or by refresh token; the match takes
        the host's tokens. An unmatched host credential is appended. With no
        stored accounts the pool holds the host credential alone.
        """
        now = now if now is not None else now_ms()
        host_account_id = extract_account_id(host.access) if host else None
        accounts: list[ManagedAccount] = []
        active_index = 0

        if store is not None and store.accounts:
            matched = False
            for i, record in enumerate(store.accounts):
                account = ManagedAccount.from_record(record, i, now)
                if host is not None and (
                    (host_account_id and record.account_id == host_account_id)
                    or record.refresh_token == host.refresh
                ):
                    matched = True
                    account.refresh_token = host.refresh
                    account.access_token = host.access
                    account.expires_at = host.expires
                    account.account_id = host_account_id or record.account_id
                accounts.append(account)

            if host is not None and not matched:
                accounts.append(
                    ManagedAccount(
                        index=len(accounts),
                        refresh_token=host.refresh,
                        access_token=host.access,
                        expires_at=host.expires,
                        account_id=host_account_id,
                        added_at=now,
                        last_used=now,
                        last_switch_reason=SwitchReason.INITIAL,
                    )
                )
                logger.info("host_account_appended", index=len(accounts) - 1)
            active_index = store.active_index
        elif host is not None:
            accounts.append(
                ManagedAccount(
                    index=0,
                    refresh_token=host.refresh,
                    access_token=host.access,
                    expires_at=host.expires,
                    account_id=host_account_id,
                    added_at=now,
                    last_used=0,
                    last_switch_reason=SwitchReason.INITIAL,
                )
            )

        pool = cls(
            accounts,
            active_index=active_index,
            accounts_path=accounts_path,
            notify_debounce_ms=notify_debounce_ms,
        )
        logger.info(
            "account_pool_loaded",
            count=pool.account_count,
            active_index=pool.active_index,
        )
        return pool

    @classmethod
    def load(
        cls,
        accounts_path: Path | None = None,
        host: HostCredential | None = None,
        **kwargs: int,
    ) -> "AccountPool":
        """Read the accounts file and reconcile it with the host credential."""
        path = Path(accounts_path or DEFAULT_ACCOUNTS_PATH).expanduser()
        return cls.from_store(load_store(path), host, accounts_path=path, **kwargs)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def accounts_path(self) -> Path:
        """Get the accounts file path."""
        return Path(self._accounts_path).expanduser()

    @property
    def account_count(self) -> int:
        """Get total number of accounts."""
        return len(self._accounts)

    @property
    def active_index(self) -> int:
        """Index of the active account, -1 for an empty pool."""
        return self._active_index

    @property
    def accounts(self) -> list[ManagedAccount]:
        return list(self._accounts)

    def available_count(self, now: int | None = None) -> int:
        now = now if now is not None else now_ms()
        return sum(1 for a in self._accounts if a.is_available(now))

    def get(self, index: int) -> ManagedAccount | None:
        if 0 <= index < len(self._accounts):
            return self._accounts[index]
        return None

    def current(self) -> ManagedAccount | None:
        """Active account regardless of availability."""
        return self.get(self._active_index)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def current_or_next(self, now: int | None = None) -> ManagedAccount | None:
        """Return the active account if available, else the next available one.

        Returns:
            Selected account, or None if no account is available
        """
        now = now if now is not None else now_ms()
        current = self.current()
        if current is not None and current.is_available(now):
            current.mark_used(now)
            return current

        selected = self.next_available(now)
        if selected is not None:
            self._active_index = selected.index
            logger.debug("account_rotated", index=selected.index)
        return selected

    def next_available(self, now: int | None = None) -> ManagedAccount | None:
        """Round-robin over currently available accounts, in pool order.

        The cursor increases monotonically and is taken modulo the number of
        available accounts, so repeated blocking cycles advance fairly.
        """
        now = now if now is not None else now_ms()
        available = [a for a in self._accounts if a.is_available(now)]
        if not available:
            logger.warning(
                "all_accounts_unavailable",
                total=len(self._accounts),
                rate_limited=sum(
                    1 for a in self._accounts if a.rate_limited_until is not None
                ),
                cooling_down=sum(
                    1 for a in self._accounts if a.cooling_down_until is not None
                ),
            )
            return None

        account = available[self._cursor % len(available)]
        self._cursor += 1
        account.mark_used(now)
        return account

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def mark_rate_limited(
        self, account: ManagedAccount, retry_after_ms: int | float, now: int | None = None
    ) -> None:
        """Block an account until ``now + retry_after_ms``."""
        now = now if now is not None else now_ms()
        account.rate_limited_until = now + max(0, int(retry_after_ms))
        logger.info(
            "account_rate_limited",
            index=account.index,
            account=account.label,
            retry_after_ms=max(0, int(retry_after_ms)),
        )

    def mark_cooling_down(
        self,
        account: ManagedAccount,
        cooldown_ms: int | float,
        reason: CooldownReason,
        now: int | None = None,
    ) -> None:
        """Block an account for a local failure, independent of rate limits."""
        now = now if now is not None else now_ms()
        account.cooling_down_until = now + max(0, int(cooldown_ms))
        account.cooldown_reason = reason
        logger.warning(
            "account_cooling_down",
            index=account.index,
            account=account.label,
            reason=str(reason),
            cooldown_ms=max(0, int(cooldown_ms)),
        )

    def mark_switched(self, account: ManagedAccount, reason: SwitchReason) -> None:
        """Make ``account`` the active one and record why."""
        account.last_switch_reason = reason
        self._active_index = account.index

    def set_active_index(
        self, index: int, now: int | None = None
    ) -> ManagedAccount | None:
        """Manually switch the active account.

        Returns:
            The new active account, or None if the index is out of range
        """
        account = self.get(index)
        if account is None:
            return None
        self._active_index = index
        account.mark_used(now)
        account.last_switch_reason = SwitchReason.ROTATION
        logger.info("active_account_set", index=index, account=account.label)
        return account

    def advance_past(
        self, account: ManagedAccount, now: int | None = None
    ) -> ManagedAccount | None:
        """Move the active pointer off ``account`` after it was rate limited.

        Picks the next available account after it in pool order (wrapping).
        If none is available the pointer still moves to the following index
        so the next call does not retry the blocked account first.

        Returns:
            The new active account, or None when the pool has a single account
        """
        now = now if now is not None else now_ms()
        count = len(self._accounts)
        if count <= 1:
            return None

        target: ManagedAccount | None = None
        for offset in range(1, count):
            candidate = self._accounts[(account.index + offset) % count]
            if candidate.is_available(now):
                target = candidate
                break
        if target is None:
            target = self._accounts[(account.index + 1) % count]

        self.mark_switched(target, SwitchReason.RATE_LIMIT)
        logger.info(
            "active_account_advanced",
            from_index=account.index,
            to_index=target.index,
        )
        return target

    def update_from_tokens(
        self,
        account: ManagedAccount,
        access: str,
        refresh: str,
        expires: int,
    ) -> None:
        """Store freshly minted credentials on an account."""
        account.refresh_token = refresh
        account.access_token = access
        account.expires_at = expires
        account.account_id = extract_account_id(access) or account.account_id

    def find(self, refresh: str, access: str | None = None) -> ManagedAccount | None:
        """Account with the identity of ``access`` or the same refresh token."""
        account_id = extract_account_id(access)
        for account in self._accounts:
            if (account_id and account.account_id == account_id) or (
                account.refresh_token == refresh
            ):
                return account
        return None

    def add_or_update(
        self,
        refresh: str,
        access: str | None = None,
        expires: int | None = None,
        now: int | None = None,
    ) -> ManagedAccount:
        """Insert an account, or update the one with the same identity.

        Identity is the account id decoded from ``access`` when present,
        otherwise the refresh token.
        """
        now = now if now is not None else now_ms()
        account_id = extract_account_id(access)
        account = self.find(refresh, access)
        if account is not None:
            account.refresh_token = refresh
            account.access_token = access
            account.expires_at = expires
            account.account_id = account_id or account.account_id
            logger.info("account_updated", index=account.index)
            return account

        account = ManagedAccount(
            index=len(self._accounts),
            refresh_token=refresh,
            access_token=access,
            expires_at=expires,
            account_id=account_id,
            added_at=now,
            last_used=0,
            last_switch_reason=SwitchReason.INITIAL,
        )
        self._accounts.append(account)
        if self._active_index < 0:
            self._active_index = 0
        logger.info("account_added", index=account.index, account=account.label)
        return account

    def remove(self, index: int) -> bool:
        """Remove an account; remaining indices are reassigned densely.

        The active pointer keeps following the same account when it survives.
        """
        if self.get(index) is None:
            return False

        active = self.current()
        removed = self._accounts.pop(index)
        self._reindex()

        if not self._accounts:
            self._active_index = -1
            self._cursor = 0
        elif active is not None and active is not removed:
            self._active_index = active.index
        else:
            self._active_index = min(index, len(self._accounts) - 1)

        logger.info("account_removed", index=index, remaining=len(self._accounts))
        return True

    def _reindex(self) -> None:
        for i, account in enumerate(self._accounts):
            account.index = i

    # ------------------------------------------------------------------
    # Waiting and notifications
    # ------------------------------------------------------------------

    def min_wait_time(self, now: int | None = None) -> int:
        """Milliseconds until some account is expected to be usable.

        0 if an account is available now, otherwise the smallest remaining
        rate-limit or cooldown window.
        """
        now = now if now is not None else now_ms()
        if any(a.is_available(now) for a in self._accounts):
            return 0

        waits: list[int] = []
        for account in self._accounts:
            if account.rate_limited_until is not None:
                waits.append(max(0, account.rate_limited_until - now))
            if account.cooling_down_until is not None:
                waits.append(max(0, account.cooling_down_until - now))
        return min(waits) if waits else 0

    def should_notify(
        self,
        index: int,
        debounce_ms: int | None = None,
        now: int | None = None,
    ) -> bool:
        """False if the same account was notified within the debounce window."""
        now = now if now is not None else now_ms()
        window = self._notify_debounce_ms if debounce_ms is None else debounce_ms
        return not (
            index == self._last_notified_index
            and now - self._last_notified_at < window
        )

    def mark_notified(self, index: int, now: int | None = None) -> None:
        self._last_notified_index = index
        self._last_notified_at = now if now is not None else now_ms()

    # ------------------------------------------------------------------
    # Persistence and status
    # ------------------------------------------------------------------

    def to_store(self) -> AccountStore:
        return AccountStore(
            accounts=[account.to_record() for account in self._accounts],
            active_index=max(0, self._active_index),
        )

    def save(self) -> bool:
        """Save rotation state to the accounts file.

        Returns:
            True if saved successfully
        """
        try:
            save_store(self.to_store(), self.accounts_path)
        except CredentialStoreError as e:
            logger.error("account_pool_save_failed", error=str(e))
            return False
        return True

    def snapshot(self, now: int | None = None) -> list[AccountSnapshot]:
        """Per-account status for monitoring."""
        now = now if now is not None else now_ms()
        return [
            AccountSnapshot(
                index=account.index,
                label=account.label,
                state=account.state(now),
                active=account.index == self._active_index,
                added_at=account.added_at,
                last_used=account.last_used,
                last_switch_reason=(
                    str(account.last_switch_reason)
                    if account.last_switch_reason
                    else None
                ),
                rate_limited_until=account.rate_limited_until,
                cooling_down_until=account.cooling_down_until,
                cooldown_reason=(
                    str(account.cooldown_reason) if account.cooldown_reason else None
                ),
                cooldown=account.format_cooldown(now),
            )
            for account in self._accounts
        ]
