"""Console output for rooms, messages and registration results."""

from __future__ import annotations

import json
from dataclasses import asdict
from enum import Enum

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from conduit_client.models import Membership, Message, RegistrationResult, RegistrationStatus, Room

console = Console()

_MEMBERSHIP_ICONS = {
    Membership.join: "📢",
    Membership.invite: "📨",
    Membership.leave: "👋",
}

_STATUS_STYLES = {
    RegistrationStatus.registered: "[green]✓ registered[/green]",
    RegistrationStatus.skipped: "[yellow]↷ already exists[/yellow]",
    RegistrationStatus.failed: "[red]✗ failed[/red]",
}


class OutputFormat(str, Enum):
    """Output formats."""

    rich = "rich"
    simple = "simple"
    json = "json"


def _room_label(room: Room) -> str:
    if room.membership is Membership.join:
        return room.display_name or "Unnamed Room"
    if room.membership is Membership.invite:
        return f"Invited to {room.room_id}"
    return f"Left {room.room_id}"


def _display_rooms_rich(rooms: list[Room]) -> None:
    """Display rooms in rich table format."""
    table = Table(title=f"Found {len(rooms)} rooms", show_lines=True)
    table.add_column("#", style="cyan", width=3)
    table.add_column("Room Name", style="green")
    table.add_column("Room ID", style="dim")
    table.add_column("Membership", style="yellow")

    for idx, room in enumerate(rooms, 1):
        table.add_row(
            str(idx),
            escape(room.display_name or "Unnamed Room"),
            room.room_id,
            f"{_MEMBERSHIP_ICONS[room.membership]} {room.membership.value}",
        )

    console.print(table)


def _display_rooms_simple(rooms: list[Room]) -> None:
    """Display rooms in simple text format."""
    print(f"Found {len(rooms)} rooms:")
    for room in rooms:
        icon = _MEMBERSHIP_ICONS[room.membership]
        if room.membership is Membership.join:
            print(f"  {icon} {_room_label(room)} ({room.room_id})")
        else:
            print(f"  {icon} {_room_label(room)}")


def _display_rooms_json(rooms: list[Room]) -> None:
    """Display rooms in JSON format."""
    data = [{**asdict(room), "display_name": room.display_name} for room in rooms]
    print(json.dumps(data, indent=2, default=str))


def display_rooms(rooms: list[Room], format: OutputFormat = OutputFormat.rich) -> None:
    if format == OutputFormat.rich:
        _display_rooms_rich(rooms)
    elif format == OutputFormat.simple:
        _display_rooms_simple(rooms)
    elif format == OutputFormat.json:
        _display_rooms_json(rooms)


def format_message(message: Message, room: Room | None = None) -> str:
    """Plain ``[room] sender: body`` line for a live message."""
    label = room.name if room is not None else message.room_id
    return f"[{label}] {message.sender}: {message.body}"


def display_registration_results(results: list[RegistrationResult]) -> None:
    """Display per-user registration outcomes."""
    table = Table(title="User setup", show_lines=True)
    table.add_column("Username", style="cyan")
    table.add_column("Result")
    table.add_column("User ID / Error", style="dim")

    for result in results:
        detail = result.user_id or result.error or ""
        table.add_row(result.username, _STATUS_STYLES[result.status], escape(detail))

    console.print(table)
