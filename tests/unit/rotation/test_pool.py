"""Tests for AccountPool selection, transitions and reconciliation."""

from collections.abc import Callable
from pathlib import Path

import pytest

from codex_multi_proxy.rotation.accounts import (
    AccountState,
    CooldownReason,
    ManagedAccount,
    SwitchReason,
)
from codex_multi_proxy.rotation.host_auth import HostCredential
from codex_multi_proxy.rotation.pool import AccountPool
from codex_multi_proxy.rotation.storage import AccountRecord, AccountStore, load_store


NOW = 1_700_000_000_000


def _pool(count: int, active_index: int = 0, **kwargs: object) -> AccountPool:
    accounts = [
        ManagedAccount(
            index=i,
            refresh_token=f"refresh-{i}",
            added_at=NOW - 10_000,
            account_id=f"acct-{i}",
        )
        for i in range(count)
    ]
    return AccountPool(accounts, active_index=active_index, **kwargs)  # type: ignore[arg-type]


class TestSelection:
    """Sticky active account with round-robin fallback."""

    @pytest.mark.unit
    def test_empty_pool(self) -> None:
        pool = AccountPool()

        assert pool.account_count == 0
        assert pool.active_index == -1
        assert pool.current_or_next(NOW) is None
        assert pool.min_wait_time(NOW) == 0

    @pytest.mark.unit
    def test_current_is_sticky_while_available(self) -> None:
        pool = _pool(3, active_index=1)

        first = pool.current_or_next(NOW)
        second = pool.current_or_next(NOW + 1)

        assert first is second
        assert first is not None and first.index == 1
        assert first.last_used == NOW + 1

    @pytest.mark.unit
    def test_skips_rate_limited_active_account(self) -> None:
        """Two accounts, the first limited for a minute: the second is used.

        Verifies:
        - No wait is reported while one account is available
        - The blocked account is never returned
        - The active pointer moves to the selected account
        """
        pool = _pool(2)
        pool.mark_rate_limited(pool.accounts[0], 60_000, now=NOW)

        assert pool.min_wait_time(NOW) == 0

        selected = pool.current_or_next(NOW)

        assert selected is not None
        assert selected.index == 1
        assert pool.active_index == 1

    @pytest.mark.unit
    def test_all_blocked_returns_none_and_min_wait(self) -> None:
        """Limited for 30s and cooling down for 10s: next call waits 10s."""
        pool = _pool(2)
        pool.mark_rate_limited(pool.accounts[0], 30_000, now=NOW)
        pool.mark_cooling_down(
            pool.accounts[1], 10_000, CooldownReason.NETWORK_ERROR, now=NOW
        )

        assert pool.current_or_next(NOW) is None
        assert pool.min_wait_time(NOW) == 10_000

    @pytest.mark.unit
    def test_windows_clear_lazily(self) -> None:
        pool = _pool(1)
        account = pool.accounts[0]
        pool.mark_cooling_down(account, 5_000, CooldownReason.AUTH_FAILURE, now=NOW)

        assert account.state(NOW + 4_999) is AccountState.COOLING_DOWN
        assert pool.current_or_next(NOW + 5_000) is account
        assert account.cooling_down_until is None
        assert account.cooldown_reason is None

    @pytest.mark.unit
    def test_both_windows_must_expire(self) -> None:
        pool = _pool(1)
        account = pool.accounts[0]
        pool.mark_rate_limited(account, 1_000, now=NOW)
        pool.mark_cooling_down(account, 5_000, CooldownReason.AUTH_FAILURE, now=NOW)

        assert not account.is_available(NOW + 2_000)
        assert account.rate_limited_until is None
        assert account.is_available(NOW + 5_000)

    @pytest.mark.unit
    def test_round_robin_cursor_advances(self) -> None:
        pool = _pool(3)

        picks = [pool.next_available(NOW).index for _ in range(4)]  # type: ignore[union-attr]

        assert picks == [0, 1, 2, 0]

    @pytest.mark.unit
    def test_round_robin_over_available_only(self) -> None:
        pool = _pool(3)
        pool.mark_rate_limited(pool.accounts[1], 60_000, now=NOW)

        picks = [pool.next_available(NOW).index for _ in range(3)]  # type: ignore[union-attr]

        assert picks == [0, 2, 0]


class TestTransitions:
    @pytest.mark.unit
    def test_mark_rate_limited_clamps_negative(self) -> None:
        pool = _pool(1)
        account = pool.accounts[0]

        pool.mark_rate_limited(account, -5, now=NOW)

        assert account.rate_limited_until == NOW

    @pytest.mark.unit
    def test_advance_past_moves_to_next_available(self) -> None:
        pool = _pool(3)
        pool.mark_rate_limited(pool.accounts[1], 60_000, now=NOW)
        pool.mark_rate_limited(pool.accounts[0], 60_000, now=NOW)

        target = pool.advance_past(pool.accounts[0], now=NOW)

        assert target is not None and target.index == 2
        assert pool.active_index == 2
        assert target.last_switch_reason is SwitchReason.RATE_LIMIT

    @pytest.mark.unit
    def test_advance_past_moves_even_when_all_blocked(self) -> None:
        pool = _pool(2)
        for account in pool.accounts:
            pool.mark_rate_limited(account, 60_000, now=NOW)

        target = pool.advance_past(pool.accounts[0], now=NOW)

        assert target is not None and target.index == 1
        assert pool.active_index == 1

    @pytest.mark.unit
    def test_advance_past_single_account(self) -> None:
        pool = _pool(1)

        assert pool.advance_past(pool.accounts[0], now=NOW) is None
        assert pool.active_index == 0

    @pytest.mark.unit
    def test_set_active_index(self) -> None:
        pool = _pool(3)

        account = pool.set_active_index(2, now=NOW)

        assert account is not None
        assert pool.active_index == 2
        assert account.last_used == NOW
        assert pool.set_active_index(5) is None
        assert pool.active_index == 2

    @pytest.mark.unit
    def test_remove_keeps_active_identity(self) -> None:
        pool = _pool(3, active_index=2)

        assert pool.remove(0) is True

        assert [a.index for a in pool.accounts] == [0, 1]
        assert pool.current() is not None
        assert pool.current().account_id == "acct-2"  # type: ignore[union-attr]

    @pytest.mark.unit
    def test_remove_active_and_last(self) -> None:
        pool = _pool(2, active_index=1)

        assert pool.remove(1) is True
        assert pool.active_index == 0
        assert pool.remove(0) is True
        assert pool.active_index == -1
        assert pool.remove(0) is False

    @pytest.mark.unit
    def test_add_or_update_matches_identity(self, token_factory: Callable[..., str]) -> None:
        pool = AccountPool()
        token = token_factory("acct-new")

        added = pool.add_or_update("r1", token, NOW + 3_600_000, now=NOW)
        updated = pool.add_or_update("r2", token_factory("acct-new"), NOW, now=NOW)

        assert added is updated
        assert pool.account_count == 1
        assert pool.active_index == 0
        assert updated.refresh_token == "r2"
        assert updated.account_id == "acct-new"
        assert updated.label == "Account 1 (ct-new)"

    @pytest.mark.unit
    def test_notification_debounce(self) -> None:
        pool = _pool(2, notify_debounce_ms=30_000)

        assert pool.should_notify(0, now=NOW)
        pool.mark_notified(0, now=NOW)

        assert not pool.should_notify(0, now=NOW + 29_999)
        assert pool.should_notify(1, now=NOW + 1)
        assert pool.should_notify(0, now=NOW + 30_000)


class TestReconciliation:
    """Merging the stored accounts with the host credential."""

    @pytest.mark.unit
    def test_host_credential_alone_seeds_pool(self, token_factory: Callable[..., str]) -> None:
        host = HostCredential(
            refresh="host-refresh", access=token_factory("host"), expires=NOW
        )

        pool = AccountPool.from_store(None, host, now=NOW)

        assert pool.account_count == 1
        account = pool.accounts[0]
        assert account.refresh_token == "host-refresh"
        assert account.account_id == "host"
        assert account.access_token == host.access

    @pytest.mark.unit
    def test_host_credential_matches_by_account_id(self, token_factory: Callable[..., str]) -> None:
        store = AccountStore(
            accounts=[
                AccountRecord(refresh_token="old", account_id="acct-a"),
                AccountRecord(refresh_token="other", account_id="acct-b"),
            ],
            active_index=1,
        )
        host = HostCredential(
            refresh="rotated", access=token_factory("acct-a"), expires=NOW
        )

        pool = AccountPool.from_store(store, host, now=NOW)

        assert pool.account_count == 2
        assert pool.accounts[0].refresh_token == "rotated"
        assert pool.accounts[0].expires_at == NOW
        assert pool.active_index == 1

    @pytest.mark.unit
    def test_unmatched_host_credential_is_appended(self) -> None:
        store = AccountStore(accounts=[AccountRecord(refresh_token="stored")])
        host = HostCredential(refresh="fresh", access=None, expires=None)

        pool = AccountPool.from_store(store, host, now=NOW)

        assert [a.refresh_token for a in pool.accounts] == ["stored", "fresh"]
        assert pool.accounts[1].index == 1

    @pytest.mark.unit
    def test_save_round_trips_rotation_state(self, tmp_path: Path) -> None:
        path = tmp_path / "accounts.json"
        pool = _pool(2, accounts_path=path)
        pool.mark_rate_limited(pool.accounts[0], 60_000, now=NOW)
        pool.mark_cooling_down(
            pool.accounts[1], 30_000, CooldownReason.AUTH_FAILURE, now=NOW
        )
        pool.advance_past(pool.accounts[0], now=NOW)

        assert pool.save() is True

        store = load_store(path)
        assert store is not None
        assert store.active_index == 1
        assert store.accounts[0].rate_limit_reset_time == NOW + 60_000
        assert store.accounts[1].cooldown_reason == "auth-failure"
        reloaded = AccountPool.load(path, None)
        assert reloaded.accounts[1].cooldown_reason is CooldownReason.AUTH_FAILURE
        assert reloaded.active_index == 1

    @pytest.mark.unit
    def test_snapshot(self) -> None:
        pool = _pool(2)
        pool.mark_cooling_down(
            pool.accounts[1], 65_000, CooldownReason.NETWORK_ERROR, now=NOW
        )

        snapshot = pool.snapshot(NOW)

        assert snapshot[0].active is True
        assert snapshot[0].state is AccountState.AVAILABLE
        assert snapshot[1].state is AccountState.COOLING_DOWN
        assert snapshot[1].cooldown == "1m 5s (network-error)"
        assert snapshot[1].label == "Account 2 (acct-1)"
