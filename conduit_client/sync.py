"""Incremental synchronization against the ``/sync`` endpoint."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from conduit_client.errors import ProtocolError, TransportError
from conduit_client.models import Membership, Message, RoomDelta, Session, SyncResult
from conduit_client.rooms import RoomIndex
from conduit_client.transport import Transport

logger = logging.getLogger(__name__)

SYNC_PATH = "/_matrix/client/v3/sync"
SYNC_TIMEOUT_MS = 30000
# Extra client-side time on top of the server-side long-poll wait.
_REQUEST_GRACE_S = 10.0

MessageHandler = Callable[[Message], "Awaitable[None] | None"]


# =============================================================================
# Response parsing
# =============================================================================


def _events(section: Any, key: str = "events") -> list[dict[str, Any]]:
    """Return the event dicts of a ``{"events": [...]}`` section, ignoring junk."""
    if not isinstance(section, dict):
        return []
    events = section.get(key)
    if not isinstance(events, list):
        return []
    return [event for event in events if isinstance(event, dict)]


def _content(event: dict[str, Any]) -> dict[str, Any]:
    content = event.get("content")
    return content if isinstance(content, dict) else {}


def _state_text(content: dict[str, Any], key: str) -> str:
    """Value of a string state field; a missing or malformed value means cleared."""
    value = content.get(key)
    return value if isinstance(value, str) else ""


def _room_delta(
    room_id: str, membership: Membership, events: Iterable[dict[str, Any]]
) -> RoomDelta:
    """Build a delta from the state events seen for one room.

    Name and canonical alias are reported separately; later events win.
    """
    name = None
    alias = None
    topic = None
    for event in events:
        event_type = event.get("type")
        if event_type == "m.room.name":
            name = _state_text(_content(event), "name")
        elif event_type == "m.room.canonical_alias":
            alias = _state_text(_content(event), "alias")
        elif event_type == "m.room.topic":
            topic = _state_text(_content(event), "topic")
    return RoomDelta(
        room_id=room_id,
        membership=membership,
        room_name=name,
        topic=topic,
        canonical_alias=alias,
    )


def _text_message(room_id: str, event: dict[str, Any]) -> Message | None:
    """Convert a timeline event to a ``Message`` if it is a plain text message."""
    if event.get("type") != "m.room.message":
        return None
    content = _content(event)
    body = content.get("body")
    if content.get("msgtype") != "m.text" or not isinstance(body, str):
        return None

    timestamp = None
    ts = event.get("origin_server_ts")
    if isinstance(ts, int):
        timestamp = datetime.fromtimestamp(ts / 1000, tz=timezone.utc)

    return Message(
        room_id=room_id,
        sender=str(event.get("sender", "")),
        body=body,
        msgtype="m.text",
        event_id=event.get("event_id"),
        timestamp=timestamp,
    )


def parse_sync_response(data: dict[str, Any]) -> SyncResult:
    """Extract room deltas and text messages from a sync response body.

    Unknown fields are ignored. Messages are only taken from joined rooms and
    keep the order in which the server returned them.
    """
    next_batch = data.get("next_batch")
    if not isinstance(next_batch, str) or not next_batch:
        raise ProtocolError("Sync response is missing 'next_batch'", operation="sync")

    rooms = data.get("rooms", {})
    if not isinstance(rooms, dict):
        raise ProtocolError("Sync response 'rooms' is not an object", operation="sync")

    deltas: list[RoomDelta] = []
    messages: list[Message] = []

    joined = rooms.get("join")
    if isinstance(joined, dict):
        for room_id, room in joined.items():
            timeline = _events(room.get("timeline") if isinstance(room, dict) else None)
            state = _events(room.get("state") if isinstance(room, dict) else None)
            deltas.append(_room_delta(room_id, Membership.join, state + timeline))
            for event in timeline:
                message = _text_message(room_id, event)
                if message is not None:
                    messages.append(message)

    invited = rooms.get("invite")
    if isinstance(invited, dict):
        for room_id, room in invited.items():
            invite_state = _events(room.get("invite_state") if isinstance(room, dict) else None)
            deltas.append(_room_delta(room_id, Membership.invite, invite_state))

    left = rooms.get("leave")
    if isinstance(left, dict):
        for room_id, room in left.items():
            timeline = _events(room.get("timeline") if isinstance(room, dict) else None)
            state = _events(room.get("state") if isinstance(room, dict) else None)
            deltas.append(_room_delta(room_id, Membership.leave, state + timeline))

    return SyncResult(next_batch=next_batch, rooms=tuple(deltas), messages=tuple(messages))


# =============================================================================
# Sync engine
# =============================================================================


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff for the continuous sync loop."""

    initial: float = 1.0
    factor: float = 2.0
    ceiling: float = 60.0
    max_retries: int = 5

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the ``attempt``-th consecutive failure (1-based)."""
        return min(self.initial * self.factor ** (attempt - 1), self.ceiling)


class SyncEngine:
    """Drives ``/sync`` for one session and feeds the results into a ``RoomIndex``.

    The engine owns the cursor: the first request carries no ``since`` and
    returns the full snapshot, later requests resume from the last
    ``next_batch``. ``stop()`` is cooperative; it is checked before each
    request and wakes up a pending backoff sleep, but never aborts a request
    that is already in flight. A stopped engine stays stopped.
    """

    def __init__(
        self,
        transport: Transport,
        session: Session,
        rooms: RoomIndex | None = None,
        *,
        backoff: BackoffPolicy | None = None,
    ) -> None:
        self.transport = transport
        self.session = session
        self.rooms = rooms if rooms is not None else RoomIndex()
        self.backoff = backoff or BackoffPolicy()
        self.cursor: str | None = None
        # Messages already past the cursor but not yet handed to a callback.
        self._pending: deque[Message] = deque()
        self._stop = asyncio.Event()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Ask ``sync_forever`` to return before its next request."""
        self._stop.set()

    async def _sync(self, timeout_ms: int) -> SyncResult:
        params = {"timeout": str(timeout_ms)}
        if self.cursor is not None:
            params["since"] = self.cursor

        data = await self.transport.request(
            "GET",
            SYNC_PATH,
            token=self.session.access_token,
            params=params,
            timeout=timeout_ms / 1000 + _REQUEST_GRACE_S,
        )
        result = parse_sync_response(data)
        self.rooms.apply_delta(result.rooms)
        self.cursor = result.next_batch
        logger.debug(
            "Synced to %s: %d room(s), %d message(s)",
            result.next_batch,
            len(result.rooms),
            len(result.messages),
        )
        return result

    async def sync_once(self, timeout_ms: int = 0) -> SyncResult:
        """Run a single sync request and return what it contained."""
        return await self._sync(timeout_ms)

    async def _wait(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _deliver(self, on_message: MessageHandler) -> None:
        while self._pending:
            outcome = on_message(self._pending[0])
            if inspect.isawaitable(outcome):
                await outcome
            self._pending.popleft()

    async def sync_forever(
        self, on_message: MessageHandler, timeout_ms: int = SYNC_TIMEOUT_MS
    ) -> None:
        """Sync until ``stop()`` is called, passing each new text message to ``on_message``.

        Transport failures are retried with exponential backoff; after
        ``backoff.max_retries`` consecutive failures the last error is raised.
        Protocol errors are raised immediately.

        If ``on_message`` raises, the error propagates and the remaining
        messages of that response stay queued; the next ``sync_forever`` call
        on this engine hands them out first, starting with the one that failed.
        """
        self._running = True
        failures = 0
        try:
            await self._deliver(on_message)
            while not self._stop.is_set():
                try:
                    result = await self._sync(timeout_ms)
                except TransportError as e:
                    failures += 1
                    if failures > self.backoff.max_retries:
                        logger.error("Sync failed %d times in a row, giving up", failures)
                        raise
                    delay = self.backoff.delay(failures)
                    logger.warning(
                        "Sync failed (%s), retrying in %.1fs (%d/%d)",
                        e,
                        delay,
                        failures,
                        self.backoff.max_retries,
                    )
                    await self._wait(delay)
                    continue

                failures = 0
                self._pending.extend(result.messages)
                await self._deliver(on_message)
        finally:
            self._running = False
