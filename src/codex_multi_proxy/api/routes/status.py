"""Status endpoints for account pool monitoring.

Provides visibility into account pool status, manual account switching,
and health checks with rotation awareness.
"""

from datetime import UTC, datetime
from typing import cast

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from starlette import status
from structlog import get_logger

from codex_multi_proxy.rotation.pool import AccountPool, AccountSnapshot


logger = get_logger(__name__)

router = APIRouter(tags=["status"])


class AccountStatusResponse(BaseModel):
    """Status response for a single account."""

    model_config = ConfigDict(populate_by_name=True)

    index: int = Field(description="1-based position in the pool")
    label: str = Field(description="Human-readable account label")
    active: bool = Field(description="Whether this is the active account")
    state: str = Field(description="available, rate-limited or cooling-down")
    rate_limited_until: int | None = Field(
        default=None,
        serialization_alias="rateLimitedUntil",
        description="Epoch ms when the rate limit resets",
    )
    cooling_down_until: int | None = Field(
        default=None,
        serialization_alias="coolingDownUntil",
        description="Epoch ms when the cooldown ends",
    )
    cooldown_reason: str | None = Field(
        default=None,
        serialization_alias="cooldownReason",
        description="auth-failure or network-error",
    )
    last_used: int = Field(
        serialization_alias="lastUsed",
        description="Epoch ms of the last selection, 0 if never used",
    )
    last_switch_reason: str | None = Field(
        default=None,
        serialization_alias="lastSwitchReason",
        description="Why the account last became active",
    )

    @classmethod
    def from_snapshot(cls, snapshot: AccountSnapshot) -> "AccountStatusResponse":
        return cls(
            index=snapshot.index + 1,
            label=snapshot.label,
            active=snapshot.active,
            state=str(snapshot.state),
            rate_limited_until=snapshot.rate_limited_until,
            cooling_down_until=snapshot.cooling_down_until,
            cooldown_reason=snapshot.cooldown_reason,
            last_used=snapshot.last_used,
            last_switch_reason=snapshot.last_switch_reason,
        )


class PoolStatusResponse(BaseModel):
    """Aggregate status response for the account pool."""

    model_config = ConfigDict(populate_by_name=True)

    total_accounts: int = Field(
        serialization_alias="totalAccounts",
        description="Total configured accounts",
    )
    available_accounts: int = Field(
        serialization_alias="availableAccounts",
        description="Accounts ready for requests",
    )
    active_index: int | None = Field(
        default=None,
        serialization_alias="activeIndex",
        description="1-based index of the active account",
    )
    min_wait_ms: int = Field(
        serialization_alias="minWaitMs",
        description="Milliseconds until some account becomes usable",
    )
    accounts: list[AccountStatusResponse] = Field(description="Per-account details")


class HealthResponse(BaseModel):
    """Health check response with rotation awareness."""

    model_config = ConfigDict(populate_by_name=True)

    status: str = Field(description="Service health status")
    available_accounts: int = Field(
        serialization_alias="availableAccounts",
        description="Number of accounts ready for requests",
    )
    timestamp: str = Field(description="Current server timestamp")


def get_pool_from_request(request: Request) -> AccountPool:
    """Get the account pool from app state.

    Raises:
        HTTPException: If pool not available
    """
    pool = getattr(request.app.state, "account_pool", None)
    if pool is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Account pool not initialized",
        )
    return cast(AccountPool, pool)


async def _pool_status(pool: AccountPool) -> PoolStatusResponse:
    async with pool.lock:
        snapshots = pool.snapshot()
        return PoolStatusResponse(
            total_accounts=pool.account_count,
            available_accounts=pool.available_count(),
            active_index=pool.active_index + 1 if pool.active_index >= 0 else None,
            min_wait_ms=pool.min_wait_time(),
            accounts=[AccountStatusResponse.from_snapshot(s) for s in snapshots],
        )


@router.get("/health", response_model=HealthResponse, response_model_by_alias=True)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint with account pool status.

    Returns service health and number of available accounts.
    """
    try:
        pool = get_pool_from_request(request)
        available = pool.available_count()
        health = "healthy" if available > 0 else "degraded"
    except HTTPException:
        available = 0
        health = "degraded"

    return HealthResponse(
        status=health,
        available_accounts=available,
        timestamp=datetime.now(UTC).isoformat(),
    )


@router.get(
    "/accounts/status", response_model=PoolStatusResponse, response_model_by_alias=True
)
async def get_pool_status(request: Request) -> PoolStatusResponse:
    """Get detailed status of the account pool."""
    pool = get_pool_from_request(request)
    return await _pool_status(pool)


@router.post(
    "/accounts/{index}/activate",
    response_model=PoolStatusResponse,
    response_model_by_alias=True,
)
async def activate_account(request: Request, index: int) -> PoolStatusResponse:
    """Make an account the active one.

    Args:
        index: 1-based account position

    Raises:
        HTTPException: If no account has that index
    """
    pool = get_pool_from_request(request)
    async with pool.lock:
        account = pool.set_active_index(index - 1)
        if account is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Account {index} not found",
            )
        pool.save()
    logger.info("account_activated_via_api", index=index, account=account.label)
    return await _pool_status(pool)
