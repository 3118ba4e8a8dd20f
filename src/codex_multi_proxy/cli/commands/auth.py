"""OAuth login commands for adding accounts to the pool."""

import asyncio
from typing import Annotated

import typer
from rich import box
from rich.console import Console
from rich.table import Table
from structlog import get_logger

from codex_multi_proxy.auth.oauth.token_exchange import build_authorization_url
from codex_multi_proxy.config.settings import Settings, get_settings
from codex_multi_proxy.exceptions import ConfigurationError
from codex_multi_proxy.rotation.startup import load_account_pool
from codex_multi_proxy.rotation.tokens import TokenRefreshFailure, exchange_code
from codex_multi_proxy.services.orchestrator import oauth_config_from_settings


app = typer.Typer(name="auth", help="OAuth login and account enrollment")

console = Console()
logger = get_logger(__name__)


def _get_settings() -> Settings:
    try:
        return get_settings()
    except ConfigurationError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1) from e


@app.command(name="login-url")
def login_url() -> None:
    """Print an authorization URL and the PKCE verifier for it.

    Open the URL, log in, then pass the ``code`` parameter of the redirect
    to ``codex-multi-proxy auth add`` together with the verifier.

    Examples:
        codex-multi-proxy auth login-url
    """
    settings = _get_settings()
    flow = build_authorization_url(oauth_config_from_settings(settings))

    table = Table(
        show_header=False,
        box=box.ROUNDED,
        title="OpenAI OAuth Login",
        title_style="bold white",
    )
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white", overflow="fold")
    table.add_row("Verifier", flow.verifier)
    table.add_row("State", flow.state)
    console.print(table)
    console.print("Open this URL in a browser:")
    console.print(flow.url, soft_wrap=True, highlight=False)
    console.print(
        "\nThen run: [bold]codex-multi-proxy auth add CODE --verifier "
        f"{flow.verifier}[/bold]"
    )


@app.command(name="add")
def add_account(
    code: Annotated[str, typer.Argument(help="Authorization code from the redirect URL")],
    verifier: Annotated[
        str,
        typer.Option("--verifier", "-v", help="PKCE verifier printed by login-url"),
    ],
) -> None:
    """Exchange an authorization code and add the account to the pool.

    An account that is already in the pool is updated in place.

    Examples:
        codex-multi-proxy auth add ac_123... --verifier abc...
    """
    settings = _get_settings()
    result = asyncio.run(
        exchange_code(code, verifier, config=oauth_config_from_settings(settings))
    )
    if isinstance(result, TokenRefreshFailure):
        console.print(f"[red]Token exchange failed: {result.reason}[/red]")
        raise typer.Exit(1)

    pool = load_account_pool(settings)
    existing = pool.find(result.refresh, result.access)
    if existing is None and pool.account_count >= settings.rotation.max_accounts:
        console.print(
            f"[red]Account limit reached ({settings.rotation.max_accounts}). "
            "Remove an account first.[/red]"
        )
        raise typer.Exit(1)

    account = pool.add_or_update(result.refresh, result.access, result.expires)
    if not pool.save():
        console.print("[red]Failed to save the accounts file.[/red]")
        raise typer.Exit(1)

    action = "Updated" if existing is not None else "Added"
    console.print(
        f"[green]{action} {account.label}. "
        f"The pool has {pool.account_count} account(s).[/green]"
    )
