"""Command line entry point for codex-multi-proxy."""

import os
from pathlib import Path
from typing import Annotated, Any

import orjson
import typer
import uvicorn
from rich.console import Console

from codex_multi_proxy import __version__
from codex_multi_proxy.cli.commands.accounts import app as accounts_app
from codex_multi_proxy.cli.commands.auth import app as auth_app
from codex_multi_proxy.config.settings import CONFIG_OVERRIDES_ENV, Settings
from codex_multi_proxy.core.logging import setup_logging
from codex_multi_proxy.exceptions import ConfigurationError


app = typer.Typer(
    name="codex-multi-proxy",
    help="Multi-account OpenAI Codex proxy",
    no_args_is_help=True,
)
app.add_typer(accounts_app, name="accounts")
app.add_typer(auth_app, name="auth")

console = Console()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"codex-multi-proxy {__version__}")
        raise typer.Exit()


@app.callback()
def app_main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = None,
) -> None:
    """Multi-account OpenAI Codex proxy."""


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"codex-multi-proxy {__version__}")


def _server_overrides(
    host: str | None, port: int | None, log_level: str | None, reload: bool | None
) -> dict[str, Any]:
    server = {
        key: value
        for key, value in {
            "host": host,
            "port": port,
            "log_level": log_level,
            "reload": reload,
        }.items()
        if value is not None
    }
    return {"server": server} if server else {}


@app.command()
def serve(
    host: Annotated[
        str | None, typer.Option("--host", help="Host to bind to")
    ] = None,
    port: Annotated[
        int | None, typer.Option("--port", "-p", help="Port to listen on")
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="DEBUG, INFO, WARNING, ERROR or CRITICAL"),
    ] = None,
    reload: Annotated[
        bool | None, typer.Option("--reload/--no-reload", help="Enable auto-reload")
    ] = None,
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to a TOML configuration file"),
    ] = None,
) -> None:
    """Start the proxy server."""
    overrides = _server_overrides(host, port, log_level, reload)
    try:
        settings = Settings.from_config(config_path=config, **overrides)
    except (OSError, ValueError) as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1) from e

    # The app factory runs in uvicorn's process and reads these back
    if config is not None:
        os.environ["CONFIG_FILE"] = str(config)
    if overrides:
        os.environ[CONFIG_OVERRIDES_ENV] = orjson.dumps(overrides).decode()

    setup_logging(
        json_logs=settings.server.json_logs,
        log_level_name=settings.server.log_level,
        log_file=settings.server.log_file,
    )
    console.print(
        f"Serving on [bold]{settings.server_url}[/bold] "
        f"(accounts: {settings.accounts_path})"
    )
    uvicorn.run(
        "codex_multi_proxy.api.app:get_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.server.reload,
        log_config=None,
    )


def main() -> None:
    try:
        app()
    except ConfigurationError as e:
        console.print(f"[red]{e.message}[/red]")
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
