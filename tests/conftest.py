"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote

import pytest

from conduit_client.errors import TransportError
from conduit_client.models import Session

SERVER_NAME = "conduit.local"


@dataclass
class Call:
    """One request seen by a fake transport."""

    method: str
    path: str
    token: str | None = None
    body: dict[str, Any] | None = None
    params: dict[str, str] | None = None


def http_error(status: int, errcode: str, error: str) -> TransportError:
    """Build the error the real transport raises for a Matrix error response."""
    return TransportError(
        f"HTTP {status}",
        status=status,
        errcode=errcode,
        server_message=error,
        body=json.dumps({"errcode": errcode, "error": error}),
    )


class FakeTransport:
    """Transport returning scripted responses (or raising scripted errors) in order."""

    def __init__(self, *responses: dict[str, Any] | BaseException) -> None:
        self.responses = list(responses)
        self.calls: list[Call] = []

    async def request(self, method, path, *, token=None, body=None, params=None, timeout=None):  # noqa: ARG002
        self.calls.append(Call(method, path, token, body, params))
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} {path}")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class FakeHomeserver:
    """Tiny in-memory homeserver speaking just enough of the client API.

    Every room event is appended to a global log; the sync cursor is the
    log length, so a sync with ``since=N`` returns only events after N.
    """

    def __init__(self, server_name: str = SERVER_NAME) -> None:
        self.server_name = server_name
        self.homeserver = f"http://{server_name}"
        self.passwords: dict[str, str] = {}
        self.display_names: dict[str, str] = {}
        self.tokens: dict[str, str] = {}
        self.rooms: dict[str, dict[str, str]] = {}
        self.log: list[tuple[int, str, dict[str, Any]]] = []
        self.calls: list[Call] = []
        self.failures: list[BaseException] = []
        self.sync_count = 0
        self.sync_hook = None
        self._room_counter = 0

    async def __aenter__(self) -> FakeHomeserver:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None

    # -- server-side helpers -------------------------------------------------

    def user_id(self, username: str) -> str:
        return f"@{username}:{self.server_name}"

    def add_user(self, username: str, password: str) -> str:
        self.passwords[username] = password
        return self.user_id(username)

    def _append(
        self,
        room_id: str,
        event_type: str,
        sender: str,
        content: dict[str, Any],
        state_key: str | None = None,
    ) -> str:
        seq = len(self.log) + 1
        event = {
            "type": event_type,
            "sender": sender,
            "content": content,
            "event_id": f"${seq}:{self.server_name}",
            "origin_server_ts": 1_700_000_000_000 + seq,
        }
        if state_key is not None:
            event["state_key"] = state_key
        self.log.append((seq, room_id, event))
        return event["event_id"]

    def set_membership(self, room_id: str, user_id: str, membership: str) -> None:
        self.rooms[room_id][user_id] = membership
        self._append(room_id, "m.room.member", user_id, {"membership": membership}, user_id)

    def create_room_for(self, user_id: str, name: str | None = None, topic: str | None = None) -> str:
        self._room_counter += 1
        room_id = f"!room{self._room_counter}:{self.server_name}"
        self.rooms[room_id] = {}
        self.set_membership(room_id, user_id, "join")
        if name:
            self._append(room_id, "m.room.name", user_id, {"name": name}, "")
        if topic:
            self._append(room_id, "m.room.topic", user_id, {"topic": topic}, "")
        return room_id

    def post_message(self, room_id: str, sender: str, body: str, msgtype: str = "m.text") -> str:
        return self._append(room_id, "m.room.message", sender, {"msgtype": msgtype, "body": body})

    # -- client API ----------------------------------------------------------

    async def request(self, method, path, *, token=None, body=None, params=None, timeout=None):  # noqa: ARG002
        self.calls.append(Call(method, path, token, body, params))
        await asyncio.sleep(0)
        if self.failures:
            raise self.failures.pop(0)

        if (method, path) == ("POST", "/_matrix/client/v3/login"):
            return self._login(body)
        if (method, path) == ("POST", "/_matrix/client/v3/register"):
            return self._register(body)

        user_id = self.tokens.get(token or "")
        if user_id is None:
            raise http_error(401, "M_UNKNOWN_TOKEN", "Unknown access token")

        parts = path.split("/")
        if method == "GET" and path == "/_matrix/client/v3/sync":
            return self._sync(user_id, params or {})
        if method == "POST" and path == "/_matrix/client/v3/createRoom":
            room_id = self.create_room_for(user_id, body.get("name"), body.get("topic"))
            return {"room_id": room_id}
        if method == "PUT" and path.startswith("/_matrix/client/v3/profile/"):
            self.display_names[unquote(parts[5])] = body["displayname"]
            return {}
        if method == "PUT" and "/send/m.room.message/" in path:
            room_id = unquote(parts[5])
            if self.rooms.get(room_id, {}).get(user_id) != "join":
                raise http_error(403, "M_FORBIDDEN", "You are not in this room")
            return {"event_id": self.post_message(room_id, user_id, body["body"], body["msgtype"])}
        raise http_error(404, "M_UNRECOGNIZED", "Unrecognized request")

    def _issue_token(self, username: str) -> dict[str, Any]:
        token = f"token-{username}-{len(self.tokens) + 1}"
        self.tokens[token] = self.user_id(username)
        return {"user_id": self.user_id(username), "access_token": token, "device_id": "DEVICE"}

    def _login(self, body: dict[str, Any]) -> dict[str, Any]:
        username = body["user"]
        if self.passwords.get(username) != body["password"]:
            raise http_error(403, "M_FORBIDDEN", "Invalid username or password")
        return self._issue_token(username)

    def _register(self, body: dict[str, Any]) -> dict[str, Any]:
        username = body["username"]
        if username in self.passwords:
            raise http_error(400, "M_USER_IN_USE", "User ID already taken.")
        self.passwords[username] = body["password"]
        return self._issue_token(username)

    def _sync(self, user_id: str, params: dict[str, str]) -> dict[str, Any]:
        self.sync_count += 1
        since = int(params.get("since", "0"))
        sections: dict[str, dict[str, Any]] = {"join": {}, "invite": {}, "leave": {}}
        for room_id, members in self.rooms.items():
            membership = members.get(user_id)
            if membership is None:
                continue
            events = [event for seq, rid, event in self.log if rid == room_id and seq > since]
            if since and not events:
                continue
            key = "invite_state" if membership == "invite" else "timeline"
            sections[membership][room_id] = {key: {"events": events}}

        response = {"next_batch": str(len(self.log)), "rooms": sections}
        if self.sync_hook is not None:
            self.sync_hook(self.sync_count)
        return response


@pytest.fixture(autouse=True)
def env_setup(monkeypatch):
    """Set up environment variables for tests."""
    monkeypatch.setenv("MATRIX_HOMESERVER", f"http://{SERVER_NAME}")
    monkeypatch.setenv("MATRIX_USERNAME", "admin")
    monkeypatch.setenv("MATRIX_PASSWORD", "admin123")
    monkeypatch.setenv("MATRIX_SSL_VERIFY", "false")
    monkeypatch.setattr("conduit_client.config.load_dotenv", lambda: None)
    yield


@pytest.fixture
def server():
    """A fake homeserver with the admin account registered."""
    fake = FakeHomeserver()
    fake.add_user("admin", "admin123")
    return fake


@pytest.fixture
def session(server):
    """A session for the admin account on the fake homeserver."""
    token = "token-admin-0"
    server.tokens[token] = server.user_id("admin")
    return Session(
        homeserver=server.homeserver,
        user_id=server.user_id("admin"),
        access_token=token,
        device_display_name="Conduit Python Client",
    )
