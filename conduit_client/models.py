"""Data models shared by the client core."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Membership(str, Enum):
    """Membership a user holds in a room."""

    join = "join"
    invite = "invite"
    leave = "leave"


@dataclass(frozen=True)
class Session:
    """Authenticated session produced by a successful login."""

    homeserver: str
    user_id: str
    access_token: str = field(repr=False)
    device_display_name: str = ""
    device_id: str | None = None

    @property
    def server_name(self) -> str:
        """Domain part of the user id (``@alice:example.org`` -> ``example.org``)."""
        _, _, domain = self.user_id.partition(":")
        return domain


@dataclass(frozen=True)
class Room:
    """Room information as last seen in a sync response.

    ``room_name`` and ``canonical_alias`` hold the latest ``m.room.name`` and
    ``m.room.canonical_alias`` state; which one is shown is decided on read.
    """

    room_id: str
    membership: Membership
    room_name: str | None = None
    topic: str | None = None
    canonical_alias: str | None = None

    @property
    def display_name(self) -> str | None:
        return self.room_name or self.canonical_alias

    @property
    def name(self) -> str:
        return self.display_name or self.room_id


@dataclass(frozen=True)
class RoomDelta:
    """Superseding fragment of room state.

    ``None`` fields were not mentioned; an empty string clears the field.
    """

    room_id: str
    membership: Membership | None = None
    room_name: str | None = None
    topic: str | None = None
    canonical_alias: str | None = None


@dataclass(frozen=True)
class Message:
    """A text message observed during sync."""

    room_id: str
    sender: str
    body: str
    msgtype: str = "m.text"
    event_id: str | None = None
    timestamp: datetime | None = None


@dataclass(frozen=True)
class SyncResult:
    """Everything extracted from one sync response."""

    next_batch: str
    rooms: tuple[RoomDelta, ...] = ()
    messages: tuple[Message, ...] = ()


class RegistrationStatus(str, Enum):
    """Outcome of registering one account."""

    registered = "registered"
    skipped = "skipped"
    failed = "failed"


@dataclass(frozen=True)
class RegistrationResult:
    """Per-user result of a batch registration."""

    username: str
    status: RegistrationStatus
    user_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is not RegistrationStatus.failed
