"""Account pool management commands."""

from typing import Annotated

import typer
from rich import box
from rich.console import Console
from rich.table import Table
from structlog import get_logger

from codex_multi_proxy.config.settings import get_settings
from codex_multi_proxy.exceptions import ConfigurationError
from codex_multi_proxy.rotation.accounts import (
    AccountState,
    ManagedAccount,
    format_wait_time,
    now_ms,
)
from codex_multi_proxy.rotation.pool import AccountPool, AccountSnapshot
from codex_multi_proxy.rotation.startup import load_account_pool
from codex_multi_proxy.rotation.storage import clear_store


app = typer.Typer(name="accounts", help="Inspect and manage the account pool")

console = Console()
logger = get_logger(__name__)

STATE_STYLES = {
    AccountState.AVAILABLE: "green",
    AccountState.RATE_LIMITED: "yellow",
    AccountState.COOLING_DOWN: "red",
}


def _load_pool() -> AccountPool:
    try:
        settings = get_settings()
    except ConfigurationError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1) from e
    return load_account_pool(settings)


def _require_account(pool: AccountPool, number: int) -> ManagedAccount:
    account = pool.get(number - 1)
    if account is None:
        console.print(
            f"[red]No account {number}. The pool has {pool.account_count} account(s).[/red]"
        )
        raise typer.Exit(1)
    return account


def format_ago(timestamp_ms: int, now: int) -> str:
    """``X ago`` for a past timestamp, ``never`` for 0."""
    if timestamp_ms <= 0:
        return "never"
    return f"{format_wait_time(max(0, now - timestamp_ms))} ago"


def _status_text(snapshot: AccountSnapshot, now: int) -> str:
    style = STATE_STYLES.get(snapshot.state, "white")
    text = f"[{style}]{snapshot.state}[/{style}]"
    if snapshot.state == AccountState.RATE_LIMITED and snapshot.rate_limited_until:
        text += f" (resets in {format_wait_time(snapshot.rate_limited_until - now)})"
    elif snapshot.cooldown:
        text += f" ({snapshot.cooldown})"
    return text


@app.command(name="list")
def list_accounts() -> None:
    """List accounts in pool order."""
    pool = _load_pool()
    if pool.account_count == 0:
        console.print(
            "[yellow]No accounts configured. Run `codex-multi-proxy auth add`.[/yellow]"
        )
        return

    now = now_ms()
    table = Table(
        show_header=True,
        header_style="bold cyan",
        box=box.ROUNDED,
        title=f"Codex Accounts ({pool.account_count})",
        title_style="bold white",
    )
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Label", style="white")
    table.add_column("Status")
    table.add_column("Last Used")

    for snapshot in pool.snapshot(now):
        marker = " *" if snapshot.active else ""
        table.add_row(
            f"{snapshot.index + 1}{marker}",
            snapshot.label,
            _status_text(snapshot, now),
            format_ago(snapshot.last_used, now),
        )

    console.print(table)


@app.command(name="status")
def accounts_status() -> None:
    """Show rotation state for every account."""
    pool = _load_pool()
    if pool.account_count == 0:
        console.print(
            "[yellow]No accounts configured. Run `codex-multi-proxy auth add`.[/yellow]"
        )
        return

    now = now_ms()
    table = Table(
        show_header=True,
        header_style="bold cyan",
        box=box.ROUNDED,
        title="Account Rotation Status",
        title_style="bold white",
    )
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Account", style="white")
    table.add_column("Active")
    table.add_column("Rate Limit")
    table.add_column("Cooldown")
    table.add_column("Last Used")

    for snapshot in pool.snapshot(now):
        rate_limit = "-"
        if snapshot.state == AccountState.RATE_LIMITED and snapshot.rate_limited_until:
            remaining = format_wait_time(snapshot.rate_limited_until - now)
            rate_limit = f"[yellow]resets in {remaining}[/yellow]"
        cooldown = f"[red]{snapshot.cooldown}[/red]" if snapshot.cooldown else "-"
        table.add_row(
            str(snapshot.index + 1),
            snapshot.label,
            "[green]yes[/green]" if snapshot.active else "",
            rate_limit,
            cooldown,
            format_ago(snapshot.last_used, now),
        )

    console.print(table)

    wait_ms = pool.min_wait_time(now)
    if wait_ms > 0:
        console.print(
            f"[yellow]All accounts blocked. Next available in {format_wait_time(wait_ms)}.[/yellow]"
        )
    else:
        console.print(f"[green]{pool.available_count(now)} account(s) available.[/green]")


@app.command(name="switch")
def switch_account(
    number: Annotated[int, typer.Argument(help="1-based account number")],
) -> None:
    """Make an account the active one."""
    pool = _load_pool()
    _require_account(pool, number)
    account = pool.set_active_index(number - 1)
    if account is None or not pool.save():
        console.print("[red]Failed to save the accounts file.[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Switched to {account.label}.[/green]")


@app.command(name="remove")
def remove_account(
    number: Annotated[int, typer.Argument(help="1-based account number")],
) -> None:
    """Remove an account from the pool."""
    pool = _load_pool()
    label = _require_account(pool, number).label
    pool.remove(number - 1)
    if not pool.save():
        console.print("[red]Failed to save the accounts file.[/red]")
        raise typer.Exit(1)
    console.print(
        f"[green]Removed {label}. {pool.account_count} account(s) remaining.[/green]"
    )


@app.command(name="clear")
def clear_accounts() -> None:
    """Delete the accounts file."""
    try:
        settings = get_settings()
    except ConfigurationError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1) from e

    path = settings.accounts_path
    if clear_store(path):
        console.print(f"[green]Cleared accounts file {path}.[/green]")
    else:
        console.print(f"[yellow]No accounts file at {path}.[/yellow]")
