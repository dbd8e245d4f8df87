"""Command-line test harness for a Conduit homeserver."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, Optional

import typer
from rich.markup import escape

from conduit_client.commands import (
    create_room,
    create_test_room,
    list_rooms,
    register_users,
    send_message,
)
from conduit_client.config import DEFAULT_USERS, Config, UserSpec, _load_config, load_user_specs
from conduit_client.display import (
    OutputFormat,
    console,
    display_registration_results,
    display_rooms,
    format_message,
)
from conduit_client.errors import MatrixClientError
from conduit_client.models import Message, Session
from conduit_client.rooms import RoomIndex
from conduit_client.session import login, validate_homeserver
from conduit_client.sync import SyncEngine
from conduit_client.transport import HttpTransport

app = typer.Typer(help="A Matrix client for testing Conduit server")
setup_app = typer.Typer(help="Setup admin and test users for Conduit Matrix server")

logger = logging.getLogger(__name__)

_LOG_LEVELS = [logging.WARNING, logging.INFO, logging.DEBUG]


# =============================================================================
# Helpers
# =============================================================================


def _configure_logging(verbosity: int) -> None:
    level = _LOG_LEVELS[min(verbosity, len(_LOG_LEVELS) - 1)]
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _resolve_config(
    homeserver: Optional[str], username: Optional[str], password: Optional[str]
) -> Config:
    """Load configuration and apply command line overrides."""
    config = _load_config()

    if homeserver:
        config.homeserver = homeserver
    if username:
        config.username = username
    if password:
        config.password = password

    if not config.username or not config.password:
        console.print("[red]Username and password required[/red]")
        raise typer.Exit(1)

    return config


def _run(coro: Coroutine[Any, Any, None]) -> None:
    """Run a command coroutine, reporting client errors on the console."""
    try:
        asyncio.run(coro)
    except MatrixClientError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise typer.Exit(1) from e


def _install_stop_handlers(engine: SyncEngine) -> None:
    """Stop the sync loop cooperatively on SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()

    def _request_stop() -> None:
        if not engine.stopped:
            console.print("[yellow]Stopping after the current sync...[/yellow]")
        engine.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
            loop.add_signal_handler(sig, _request_stop)


def _transport_for(config: Config) -> HttpTransport:
    return HttpTransport(validate_homeserver(config.homeserver), ssl_verify=config.ssl_verify)


async def _login_with(transport: HttpTransport, config: Config) -> Session:
    return await login(
        transport,
        transport.homeserver,
        config.username,
        config.password,
        device_display_name=config.device_display_name,
    )


# =============================================================================
# Command Functions
# =============================================================================


async def _execute_login_command(config: Config, history: bool = True) -> None:
    """Log in and print incoming text messages until stopped."""
    async with _transport_for(config) as transport:
        session = await _login_with(transport, config)
        console.print(f"[green]✓ Logged in as {session.user_id}[/green]")

        engine = SyncEngine(transport, session)
        _install_stop_handlers(engine)
        if not history:
            await engine.sync_once()

        def on_message(message: Message) -> None:
            print(format_message(message, engine.rooms.get(message.room_id)), flush=True)

        console.print("[dim]Syncing... press Ctrl+C to stop[/dim]")
        await engine.sync_forever(on_message, timeout_ms=config.sync_timeout_ms)


async def _execute_send_command(config: Config, room_id: str, message: str) -> None:
    """Log in, learn the joined rooms and send one message."""
    async with _transport_for(config) as transport:
        session = await _login_with(transport, config)
        engine = SyncEngine(transport, session)
        await engine.sync_once()

        event_id = await send_message(transport, session, engine.rooms, room_id, message)
        console.print(f"[green]✓ Message sent to {room_id}[/green]")
        console.print(f"[dim]Event ID: {event_id}[/dim]")


async def _execute_create_room_command(config: Config, name: str, topic: Optional[str]) -> None:
    """Create a room and print its id."""
    async with _transport_for(config) as transport:
        session = await _login_with(transport, config)
        room = await create_room(transport, session, RoomIndex(), name, topic)
        print(f"Room created: {room.room_id}")


async def _execute_list_rooms_command(config: Config, format: OutputFormat) -> None:
    """List every room the account knows about."""
    async with _transport_for(config) as transport:
        session = await _login_with(transport, config)
        engine = SyncEngine(transport, session)
        rooms = await list_rooms(engine, timeout_ms=config.list_timeout_ms)
        display_rooms(rooms, format)


def _room_owner(specs: list[UserSpec]) -> Optional[UserSpec]:
    """Account used to create the test room: the first admin, else the first user."""
    for spec in specs:
        if spec.admin:
            return spec
    return specs[0] if specs else None


async def _execute_setup_command(
    homeserver: str, specs: list[UserSpec], ssl_verify: bool, test_room: bool
) -> None:
    """Register the seeded accounts and optionally create the test room."""
    async with HttpTransport(validate_homeserver(homeserver), ssl_verify=ssl_verify) as transport:
        results = await register_users(transport, transport.homeserver, specs)
        display_registration_results(results)

        owner = _room_owner(specs)
        if not test_room or owner is None:
            return

        try:
            room = await create_test_room(
                transport, transport.homeserver, owner.username, owner.password
            )
        except MatrixClientError as e:
            logger.warning("Failed to create test room: %s", e)
            console.print(f"[yellow]Failed to create test room: {escape(str(e))}[/yellow]")
            return
        console.print(f"🏠 Test room created: {room.room_id}")


# =============================================================================
# CLI Commands
# =============================================================================


@app.callback()
def main(
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Increase log output"),
):
    """A Matrix client for testing Conduit server."""
    _configure_logging(verbose)


@app.command(name="login")
def login_cmd(
    homeserver: Optional[str] = typer.Option(None, "--homeserver", "-h"),
    username: Optional[str] = typer.Option(None, "--username", "-u"),
    password: Optional[str] = typer.Option(None, "--password", "-p"),
    history: bool = typer.Option(
        True, "--history/--no-history", help="Print messages from the initial sync"
    ),
):
    """Login and start sync."""
    config = _resolve_config(homeserver, username, password)
    _run(_execute_login_command(config, history))


@app.command()
def send(
    room_id: str = typer.Option(..., "--room-id", "-r", help="Room ID"),
    message: str = typer.Option(..., "--message", "-m", help="Message to send"),
    homeserver: Optional[str] = typer.Option(None, "--homeserver", "-h"),
    username: Optional[str] = typer.Option(None, "--username", "-u"),
    password: Optional[str] = typer.Option(None, "--password", "-p"),
):
    """Send a message to a room."""
    config = _resolve_config(homeserver, username, password)
    _run(_execute_send_command(config, room_id, message))


@app.command(name="create-room")
def create_room_cmd(
    name: str = typer.Option(..., "--name", "-n", help="Room name"),
    topic: Optional[str] = typer.Option(None, "--topic", "-t", help="Room topic"),
    homeserver: Optional[str] = typer.Option(None, "--homeserver", "-h"),
    username: Optional[str] = typer.Option(None, "--username", "-u"),
    password: Optional[str] = typer.Option(None, "--password", "-p"),
):
    """Create a room."""
    config = _resolve_config(homeserver, username, password)
    _run(_execute_create_room_command(config, name, topic))


@app.command(name="list-rooms")
def list_rooms_cmd(
    homeserver: Optional[str] = typer.Option(None, "--homeserver", "-h"),
    username: Optional[str] = typer.Option(None, "--username", "-u"),
    password: Optional[str] = typer.Option(None, "--password", "-p"),
    format: OutputFormat = typer.Option(OutputFormat.rich, "--format", "-f"),
):
    """List rooms."""
    config = _resolve_config(homeserver, username, password)
    _run(_execute_list_rooms_command(config, format))


@setup_app.command()
def setup(
    homeserver: Optional[str] = typer.Option(None, "--homeserver", "-h"),
    users_file: Optional[Path] = typer.Option(
        None, "--users-file", help="JSON array of {username, password, display_name, admin}"
    ),
    test_room: bool = typer.Option(
        True, "--test-room/--no-test-room", help="Create the General Discussion room"
    ),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Increase log output"),
):
    """Register the seeded accounts on the homeserver."""
    _configure_logging(verbose + 1)
    config = _load_config()
    try:
        specs = load_user_specs(users_file) if users_file else list(DEFAULT_USERS)
    except MatrixClientError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise typer.Exit(1) from e

    _run(
        _execute_setup_command(homeserver or config.homeserver, specs, config.ssl_verify, test_room)
    )


def run_setup() -> None:
    setup_app()


if __name__ == "__main__":
    app()
