"""User-facing operations built on the transport, session and sync engine."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from urllib.parse import quote

from conduit_client.config import UserSpec
from conduit_client.errors import (
    MatrixClientError,
    NotFoundError,
    ProtocolError,
    RegistrationError,
)
from conduit_client.models import (
    Membership,
    RegistrationResult,
    RegistrationStatus,
    Room,
    RoomDelta,
    Session,
)
from conduit_client.rooms import RoomIndex
from conduit_client.session import login, register_user, set_display_name
from conduit_client.sync import SyncEngine
from conduit_client.transport import Transport

logger = logging.getLogger(__name__)

CREATE_ROOM_PATH = "/_matrix/client/v3/createRoom"
TEST_ROOM_NAME = "General Discussion"
TEST_ROOM_TOPIC = "A test room for general discussion"


async def send_message(
    transport: Transport,
    session: Session,
    rooms: RoomIndex,
    room_id: str,
    body: str,
) -> str:
    """Send a plain text message and return its event id.

    Rooms the index has never seen are rejected before any request is made,
    so callers must sync first.
    """
    if room_id not in rooms:
        raise NotFoundError("Room not found", operation="send", target=room_id)

    txn_id = uuid.uuid4().hex
    logger.info("Sending message to room %s", room_id)
    data = await transport.request(
        "PUT",
        f"/_matrix/client/v3/rooms/{quote(room_id, safe='')}/send/m.room.message/{txn_id}",
        token=session.access_token,
        body={"msgtype": "m.text", "body": body},
    )

    event_id = data.get("event_id")
    if not isinstance(event_id, str):
        raise ProtocolError("Response is missing 'event_id'", operation="send", target=room_id)
    return event_id


async def create_room(
    transport: Transport,
    session: Session,
    rooms: RoomIndex,
    name: str,
    topic: str | None = None,
    *,
    preset: str = "public_chat",
    room_version: str = "10",
) -> Room:
    """Create a room and record it in the index as joined."""
    body = {"name": name, "preset": preset, "room_version": room_version}
    if topic:
        body["topic"] = topic

    logger.info("Creating room: %s", name)
    data = await transport.request(
        "POST", CREATE_ROOM_PATH, token=session.access_token, body=body
    )

    room_id = data.get("room_id")
    if not isinstance(room_id, str) or not room_id:
        raise ProtocolError("Response is missing 'room_id'", operation="createRoom", target=name)

    rooms.apply_delta(
        [RoomDelta(room_id=room_id, membership=Membership.join, room_name=name, topic=topic)]
    )
    logger.info("Room created: %s", room_id)
    return rooms.get(room_id)


async def list_rooms(engine: SyncEngine, timeout_ms: int = 5000) -> list[Room]:
    """Do a quick sync and return every room the index knows about."""
    logger.info("Fetching rooms...")
    await engine.sync_once(timeout_ms)
    return engine.rooms.list()


async def _register_one(
    transport: Transport, homeserver: str, spec: UserSpec
) -> RegistrationResult:
    try:
        session = await register_user(
            transport, homeserver, spec.username, spec.password, spec.display_name
        )
    except RegistrationError as e:
        if e.already_exists:
            logger.info("User %s already exists, skipping...", spec.username)
            return RegistrationResult(spec.username, RegistrationStatus.skipped)
        logger.warning("Failed to register user %s: %s", spec.username, e)
        return RegistrationResult(spec.username, RegistrationStatus.failed, error=str(e))

    try:
        await set_display_name(transport, session, spec.display_name)
    except MatrixClientError as e:
        logger.warning("Failed to set display name for %s: %s", spec.username, e)

    if spec.admin:
        logger.info(
            "Note: admin privileges for %s need to be set via the server configuration",
            spec.username,
        )

    return RegistrationResult(spec.username, RegistrationStatus.registered, user_id=session.user_id)


async def register_users(
    transport: Transport, homeserver: str, specs: Sequence[UserSpec]
) -> list[RegistrationResult]:
    """Register each account in order; one failure never stops the batch."""
    logger.info("Setting up users on homeserver: %s", homeserver)
    results = []
    for spec in specs:
        try:
            result = await _register_one(transport, homeserver, spec)
        except MatrixClientError as e:
            logger.warning("Failed to register user %s: %s", spec.username, e)
            result = RegistrationResult(spec.username, RegistrationStatus.failed, error=str(e))
        results.append(result)
    return results


async def create_test_room(
    transport: Transport,
    homeserver: str,
    username: str,
    password: str,
    *,
    name: str = TEST_ROOM_NAME,
    topic: str = TEST_ROOM_TOPIC,
) -> Room:
    """Log in as ``username`` and create the shared test room."""
    logger.info("Creating test room...")
    session = await login(transport, homeserver, username, password)
    return await create_room(transport, session, RoomIndex(), name, topic)
