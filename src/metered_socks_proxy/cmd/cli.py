"""Command-line interface for the SOCKS5 proxy server.

This module provides the main command-line interface for the proxy, handling:
- Command-line argument parsing
- Logging setup
- Server startup with credentials and traffic loaded from disk
- Adding users
- Printing accumulated per-user traffic

The CLI is built using Typer. Every server option can also be set with a
``METERED_SOCKS_*`` environment variable.

Example:
    # Run from command line:
    $ metered-socks-proxy adduser alice s3cret
    $ metered-socks-proxy serve --port 1080
    $ metered-socks-proxy showtraffic
"""

from pathlib import Path

import typer
from loguru import logger
from rich.console import Console

from metered_socks_proxy import __version__
from metered_socks_proxy.cmd.admin import add_user, show_traffic
from metered_socks_proxy.core.config import (
    DEFAULT_BUFFER_SIZE,
    DEFAULT_HOST,
    DEFAULT_MONITOR_INTERVAL,
    DEFAULT_PORT,
    DEFAULT_TRAFFIC_FILE,
    DEFAULT_USERS_FILE,
    ProxyConfig,
)
from metered_socks_proxy.core.exceptions import CredentialError, PersistenceError
from metered_socks_proxy.core.proxy import run_server
from metered_socks_proxy.core.utils.log_config import configure_logging

console = Console()
app = typer.Typer(help="Authenticating SOCKS5 proxy with per-user traffic accounting")

USERS_FILE_OPTION = typer.Option(
    DEFAULT_USERS_FILE,
    "--users-file",
    "-u",
    envvar="METERED_SOCKS_USERS_FILE",
    help="JSON file holding username/password pairs",
)
TRAFFIC_FILE_OPTION = typer.Option(
    DEFAULT_TRAFFIC_FILE,
    "--traffic-file",
    "-t",
    envvar="METERED_SOCKS_TRAFFIC_FILE",
    help="JSON file holding per-user byte counts",
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[cyan]Metered SOCKS Proxy v{__version__}[/cyan]")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version information and exit.",
    ),
):
    """Authenticating SOCKS5 proxy with per-user traffic accounting."""


@app.command(name="serve")
def serve(
    host: str = typer.Option(DEFAULT_HOST, "--host", envvar="METERED_SOCKS_HOST", help="Address to listen on"),
    port: int = typer.Option(DEFAULT_PORT, "--port", "-p", envvar="METERED_SOCKS_PORT", help="Port to listen on"),
    users_file: Path = USERS_FILE_OPTION,
    traffic_file: Path = TRAFFIC_FILE_OPTION,
    buffer_size: int = typer.Option(
        DEFAULT_BUFFER_SIZE,
        "--buffer-size",
        envvar="METERED_SOCKS_BUFFER_SIZE",
        help="Relay read size in bytes per direction",
    ),
    max_connections: int | None = typer.Option(
        None,
        "--max-connections",
        envvar="METERED_SOCKS_MAX_CONNECTIONS",
        help="Maximum concurrent sessions (default: unbounded)",
    ),
    monitor_interval: float = typer.Option(
        DEFAULT_MONITOR_INTERVAL,
        "--monitor-interval",
        envvar="METERED_SOCKS_MONITOR_INTERVAL",
        help="Seconds between diagnostics log lines, 0 to disable",
    ),
    debug: bool = typer.Option(
        default=False,
        help="Enable debug logging",
    ),
    log_file: bool = typer.Option(
        default=True,
        help="Also write logs to ~/.metered-socks-proxy/logs",
    ),
):
    """Start the SOCKS5 proxy server."""
    configure_logging(debug=debug, log_file=log_file)

    try:
        config = ProxyConfig(
            host=host,
            port=port,
            users_file=users_file,
            traffic_file=traffic_file,
            buffer_size=buffer_size,
            max_connections=max_connections,
            monitor_interval=monitor_interval,
        )
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {e}")
        raise typer.Exit(code=2) from e

    logger.info("Starting SOCKS5 proxy server")
    exit_code = run_server(config)
    if exit_code:
        raise typer.Exit(code=exit_code)


@app.command(name="adduser")
def adduser(
    username: str = typer.Argument(..., help="Username to add or update"),
    password: str = typer.Argument(..., help="Password for the user"),
    users_file: Path = USERS_FILE_OPTION,
):
    """Add a user, or change the password of an existing one."""
    try:
        add_user(users_file, username, password)
    except (CredentialError, PersistenceError) as e:
        console.print(f"[red]Error: {e}")
        raise typer.Exit(code=1) from e


@app.command(name="showtraffic")
def showtraffic(traffic_file: Path = TRAFFIC_FILE_OPTION):
    """Print the traffic recorded for every user."""
    try:
        show_traffic(traffic_file)
    except PersistenceError as e:
        console.print(f"[red]Error: {e}")
        raise typer.Exit(code=1) from e


if __name__ == "__main__":
    app()
