"""Account model for multi-account rotation.

An account combines the durable record fields with in-memory credentials
and the two independent unavailability windows (rate limit and cooldown).
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import TypeVar

from codex_multi_proxy.rotation.constants import ACCOUNT_LABEL_SUFFIX_LENGTH
from codex_multi_proxy.rotation.storage import AccountRecord


def now_ms() -> int:
    """Current time as Unix epoch milliseconds."""
    return int(datetime.now(UTC).timestamp() * 1000)


class SwitchReason(StrEnum):
    """Why an account became the active one (diagnostic only)."""

    INITIAL = "initial"
    ROTATION = "rotation"
    RATE_LIMIT = "rate-limit"


class CooldownReason(StrEnum):
    """Local failure classes that put an account into cooldown."""

    AUTH_FAILURE = "auth-failure"
    NETWORK_ERROR = "network-error"


class AccountState(StrEnum):
    """Account availability states."""

    AVAILABLE = "available"
    RATE_LIMITED = "rate-limited"
    COOLING_DOWN = "cooling-down"


E = TypeVar("E", bound=StrEnum)


def _parse_enum(enum_cls: type[E], value: str | None) -> E | None:
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None


def format_account_label(account_id: str | None, index: int) -> str:
    """Human label: ``Account N`` or ``Account N (last6)``, N being 1-based."""
    if not account_id:
        return f"Account {index + 1}"
    return f"Account {index + 1} ({account_id[-ACCOUNT_LABEL_SUFFIX_LENGTH:]})"


def format_wait_time(ms: int | float) -> str:
    """Format a duration as ``Xm Ys`` or ``Ys``."""
    total_seconds = max(0, int(ms // 1000))
    minutes, seconds = divmod(total_seconds, 60)
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


@dataclass
class ManagedAccount:
    """A Codex account in the rotation pool.

    ``access_token`` and ``expires_at`` are only held for accounts used in
    this process; other accounts are refreshed lazily on selection.
    """

    index: int
    refresh_token: str
    added_at: int
    last_used: int = 0
    account_id: str | None = None
    access_token: str | None = None
    expires_at: int | None = None  # Unix timestamp in milliseconds
    last_switch_reason: SwitchReason | None = None
    rate_limited_until: int | None = None
    cooling_down_until: int | None = None
    cooldown_reason: CooldownReason | None = None

    @property
    def label(self) -> str:
        return format_account_label(self.account_id, self.index)

    def is_rate_limited(self, now: int | None = None) -> bool:
        """Check the rate-limit window, clearing it once expired."""
        if self.rate_limited_until is None:
            return False
        if (now if now is not None else now_ms()) >= self.rate_limited_until:
            self.rate_limited_until = None
            return False
        return True

    def is_cooling_down(self, now: int | None = None) -> bool:
        """Check the cooldown window, clearing it and its reason once expired."""
        if self.cooling_down_until is None:
            return False
        if (now if now is not None else now_ms()) >= self.cooling_down_until:
            self.cooling_down_until = None
            self.cooldown_reason = None
            return False
        return True

    def is_available(self, now: int | None = None) -> bool:
        """Available iff neither window is open; both are always checked."""
        now = now if now is not None else now_ms()
        rate_limited = self.is_rate_limited(now)
        cooling_down = self.is_cooling_down(now)
        return not rate_limited and not cooling_down

    def state(self, now: int | None = None) -> AccountState:
        now = now if now is not None else now_ms()
        if self.is_rate_limited(now):
            return AccountState.RATE_LIMITED
        if self.is_cooling_down(now):
            return AccountState.COOLING_DOWN
        return AccountState.AVAILABLE

    def mark_used(self, now: int | None = None) -> None:
        """Record that this account was selected for a request."""
        self.last_used = now if now is not None else now_ms()

    def format_cooldown(self, now: int | None = None) -> str | None:
        """Remaining cooldown as ``wait (reason)``, or None when not cooling down."""
        if self.cooling_down_until is None:
            return None
        remaining = self.cooling_down_until - (now if now is not None else now_ms())
        if remaining <= 0:
            return None
        reason = f" ({self.cooldown_reason})" if self.cooldown_reason else ""
        return f"{format_wait_time(remaining)}{reason}"

    def to_record(self) -> AccountRecord:
        """Durable subset of this account; credentials other than the refresh token stay in memory."""
        return AccountRecord(
            refresh_token=self.refresh_token,
            added_at=self.added_at,
            last_used=self.last_used,
            account_id=self.account_id,
            last_switch_reason=(
                str(self.last_switch_reason) if self.last_switch_reason else None
            ),
            rate_limit_reset_time=self.rate_limited_until,
            cooling_down_until=self.cooling_down_until,
            cooldown_reason=str(self.cooldown_reason) if self.cooldown_reason else None,
        )

    @classmethod
    def from_record(
        cls, record: AccountRecord, index: int, now: int | None = None
    ) -> "ManagedAccount":
        return cls(
            index=index,
            refresh_token=record.refresh_token,
            added_at=record.added_at or (now if now is not None else now_ms()),
            last_used=max(0, record.last_used),
            account_id=record.account_id,
            last_switch_reason=_parse_enum(SwitchReason, record.last_switch_reason),
            rate_limited_until=record.rate_limit_reset_time,
            cooling_down_until=record.cooling_down_until,
            cooldown_reason=_parse_enum(CooldownReason, record.cooldown_reason),
        )
