"""Startup and shutdown helpers for the account pool.

Integrates with the application lifecycle management.
"""

from fastapi import FastAPI
from structlog import get_logger

from codex_multi_proxy.config.settings import Settings
from codex_multi_proxy.rotation.host_auth import HostCredential, load_host_credential
from codex_multi_proxy.rotation.pool import AccountPool


logger = get_logger(__name__)


def load_account_pool(
    settings: Settings, host: HostCredential | None = None
) -> AccountPool:
    """Load the pool from the accounts file and the host credential.

    The host credential is read from its configured file unless given.
    """
    if host is None:
        host = load_host_credential(settings.host_auth_path)
    return AccountPool.load(
        settings.accounts_path,
        host,
        notify_debounce_ms=settings.rotation.notify_debounce_ms,
    )


async def initialize_account_pool_startup(app: FastAPI, settings: Settings) -> None:
    """Load the account pool on startup.

    A corrupt or missing accounts file yields an empty pool rather than a
    startup failure.

    Args:
        app: FastAPI application
        settings: Application settings
    """
    app.state.host_credential = load_host_credential(settings.host_auth_path)
    pool = load_account_pool(settings, app.state.host_credential)
    app.state.account_pool = pool

    if pool.account_count == 0:
        logger.warning(
            "account_pool_empty",
            path=str(settings.accounts_path),
            message="Add an account with `codex-multi-proxy auth add`",
        )
        return

    logger.info(
        "account_pool_initialized",
        accounts=pool.account_count,
        available=pool.available_count(),
        path=str(settings.accounts_path),
    )


async def shutdown_account_pool(app: FastAPI) -> None:
    """Persist rotation state on shutdown.

    Args:
        app: FastAPI application
    """
    pool: AccountPool | None = getattr(app.state, "account_pool", None)
    if pool is None or pool.account_count == 0:
        return
    async with pool.lock:
        saved = pool.save()
    if saved:
        logger.info("account_pool_saved")
