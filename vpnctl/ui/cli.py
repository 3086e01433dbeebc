"""Main CLI entry point - one subcommand per daemon interaction."""

import logging
import os
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console

from vpnctl.core.configs import CONFIG_PATH, DaemonSettings, get_daemon_settings, load_raw_config
from vpnctl.core.logs import latest_log_file
from vpnctl.core.profiles import Profile, ProfileError, ProfileNotFoundError, ProfileStore
from vpnctl.daemon import channel
from vpnctl.daemon.client import DaemonNotRunningError, send_request
from vpnctl.daemon.detach import DaemonizeError, ForkRole, daemonize
from vpnctl.daemon.protocol import (
    InfoRequest,
    InfoResult,
    ProtocolError,
    Request,
    Response,
    StopRequest,
    StopResult,
)
from vpnctl.daemon.server import run_daemon
from vpnctl.ui.status_view import render_info, render_settings

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="vpnctl - run a VPN session in the background and control it.",
)

console = Console()

CONFIG_OPTION = typer.Option(None, "--config", help="Path to config.cfg")


# ============================================================================
# Shared helpers
# ============================================================================

def _load_settings(config_file: Optional[Path]) -> DaemonSettings:
    """Load settings or exit with an error message."""
    try:
        return get_daemon_settings(load_raw_config(config_file or CONFIG_PATH))
    except ValueError as e:
        typer.echo(f"Error loading configuration: {e}", err=True)
        raise typer.Exit(1)


def _query(request: Request, settings: DaemonSettings) -> Response:
    """Send one request to the daemon, exiting on any failure."""
    try:
        response = send_request(request, settings.socket_path)
    except (DaemonNotRunningError, OSError) as e:
        typer.echo(f"Failed to connect to server: {e}", err=True)
        raise typer.Exit(1)
    except ProtocolError as e:
        typer.echo(f"Invalid response from daemon: {e}", err=True)
        raise typer.Exit(1)

    if response is None:
        typer.echo("Daemon closed the connection without responding", err=True)
        raise typer.Exit(1)
    return response


def _resolve_profile(name: str, profiles_file: Optional[Path]) -> Profile:
    store = ProfileStore(profiles_file)
    try:
        return store.resolve(name)
    except ProfileNotFoundError as e:
        typer.echo(f"Failed to get server: {e}", err=True)
        known = store.names()
        if known:
            typer.echo(f"Available profiles: {', '.join(known)}", err=True)
        raise typer.Exit(1)
    except ProfileError as e:
        typer.echo(f"Failed to get server: {e}", err=True)
        raise typer.Exit(1)


def _run_worker(profile: Profile, settings: DaemonSettings) -> NoReturn:
    """Body of the detached worker; never returns into the CLI."""
    code = 1
    try:
        code = run_daemon(profile, settings)
    except Exception:
        logging.getLogger(__name__).exception("Daemon failed")
    finally:
        logging.shutdown()
    os._exit(code)


# ============================================================================
# Commands
# ============================================================================

@app.command()
def start(
    name: str = typer.Argument(..., help="Name of the stored profile to connect with"),
    profiles_file: Optional[Path] = typer.Option(None, "--profiles", help="Path to profiles.cfg"),
    config_file: Optional[Path] = CONFIG_OPTION,
) -> None:
    """
    Connect using a stored profile and keep the session running in the background.

    Example: sudo vpnctl start work
    """
    settings = _load_settings(config_file)

    if channel.exists(settings.socket_path):
        typer.echo(
            "Socket already exists. You may have a connected VPN session or a "
            "stale socket file. You may solve by:",
            err=True,
        )
        typer.echo("1. Stopping the connection by sending stop command.", err=True)
        typer.echo(
            f"2. Manually deleting the socket file which located at: {settings.socket_path}",
            err=True,
        )
        raise typer.Exit(1)

    # Resolve before detaching so errors still reach the terminal.
    profile = _resolve_profile(name, profiles_file)
    typer.echo(f"Connecting to server: {profile.name}")
    typer.echo(f"Server host: {profile.host}")

    if settings.require_root and os.geteuid() != 0:
        typer.echo("Creating the tunnel requires root privileges, re-run with sudo.", err=True)
        raise typer.Exit(1)

    try:
        role = daemonize(stdio_path=settings.log_dir.parent / "daemon.out")
    except DaemonizeError as e:
        typer.echo(f"Failed to start daemon: {e}", err=True)
        raise typer.Exit(1)

    if role is ForkRole.INTERMEDIATE:
        os._exit(0)
    if role is ForkRole.WORKER:
        _run_worker(profile, settings)

    typer.echo(
        "The process will be running in the background, you should use cli to interact with it."
    )


@app.command()
def status(config_file: Optional[Path] = CONFIG_OPTION) -> None:
    """Show the state and network parameters of the running session."""
    settings = _load_settings(config_file)
    response = _query(InfoRequest(), settings)
    if not isinstance(response, InfoResult):
        typer.echo("Received unexpected response", err=True)
        raise typer.Exit(1)
    console.print(render_info(response))


@app.command()
def stop(config_file: Optional[Path] = CONFIG_OPTION) -> None:
    """Disconnect the session and shut the daemon down."""
    settings = _load_settings(config_file)
    response = _query(StopRequest(), settings)
    if not isinstance(response, StopResult):
        typer.echo("Received unexpected response", err=True)
        raise typer.Exit(1)
    typer.echo(f"Stopped connection to server: {response.server_name}")


@app.command()
def logs(config_file: Optional[Path] = CONFIG_OPTION) -> None:
    """Print the most recent daemon log file."""
    settings = _load_settings(config_file)
    log_file = latest_log_file(settings.log_dir)
    if log_file is None:
        typer.echo(f"No log files in {settings.log_dir}", err=True)
        raise typer.Exit(1)
    with open(log_file, encoding="utf-8", errors="replace") as handle:
        for line in handle:
            typer.echo(line, nl=False)


@app.command()
def config(config_file: Optional[Path] = CONFIG_OPTION) -> None:
    """Display the effective daemon settings."""
    settings = _load_settings(config_file)
    console.print(render_settings(settings))
    console.print(f"\n[dim]Config file: {config_file or CONFIG_PATH}[/dim]")


def run() -> None:
    """Entry point for console script mapping."""
    app()


if __name__ == "__main__":
    run()
