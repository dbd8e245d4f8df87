"""Login, registration and profile calls that establish a session."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote, urlparse

from conduit_client.config import DEFAULT_DEVICE_NAME
from conduit_client.errors import (
    AuthError,
    ConfigError,
    ProtocolError,
    RegistrationError,
    TransportError,
)
from conduit_client.models import Session
from conduit_client.transport import Transport

logger = logging.getLogger(__name__)

LOGIN_PATH = "/_matrix/client/v3/login"
REGISTER_PATH = "/_matrix/client/v3/register"


def validate_homeserver(homeserver: str) -> str:
    """Return the homeserver URL without a trailing slash, or raise ``ConfigError``."""
    parsed = urlparse(homeserver)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError("Invalid homeserver URL", operation="login", target=homeserver)
    return homeserver.rstrip("/")


def _require_str(data: dict[str, Any], key: str, operation: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ProtocolError(f"Response is missing '{key}'", operation=operation)
    return value


def _session_from_response(
    data: dict[str, Any], homeserver: str, device_display_name: str, operation: str
) -> Session:
    device_id = data.get("device_id")
    return Session(
        homeserver=homeserver,
        user_id=_require_str(data, "user_id", operation),
        access_token=_require_str(data, "access_token", operation),
        device_display_name=device_display_name,
        device_id=device_id if isinstance(device_id, str) else None,
    )


async def login(
    transport: Transport,
    homeserver: str,
    username: str,
    password: str,
    *,
    device_display_name: str = DEFAULT_DEVICE_NAME,
) -> Session:
    """Exchange a username and password for an access token."""
    homeserver = validate_homeserver(homeserver)
    logger.info("Logging in as %s", username)

    try:
        data = await transport.request(
            "POST",
            LOGIN_PATH,
            body={
                "type": "m.login.password",
                "user": username,
                "password": password,
                "initial_device_display_name": device_display_name,
            },
        )
    except TransportError as e:
        if e.status is None:
            raise
        raise AuthError(
            "Login rejected",
            operation="login",
            target=username,
            status=e.status,
            errcode=e.errcode,
            server_message=e.server_message,
        ) from e

    session = _session_from_response(data, homeserver, device_display_name, "login")
    logger.info("Successfully logged in as %s", session.user_id)
    return session


async def register_user(
    transport: Transport,
    homeserver: str,
    username: str,
    password: str,
    display_name: str,
) -> Session:
    """Register an account using the dummy auth flow."""
    homeserver = validate_homeserver(homeserver)
    device_display_name = f"Conduit Client - {display_name}"
    logger.info("Registering user: %s", username)

    try:
        data = await transport.request(
            "POST",
            REGISTER_PATH,
            body={
                "auth": {"type": "m.login.dummy"},
                "username": username,
                "password": password,
                "initial_device_display_name": device_display_name,
                "inhibit_login": False,
            },
        )
    except TransportError as e:
        raise RegistrationError(
            "Registration failed",
            operation="register",
            target=username,
            status=e.status,
            errcode=e.errcode,
            server_message=e.server_message or e.body or e.message,
        ) from e

    session = _session_from_response(data, homeserver, device_display_name, "register")
    logger.info("User %s registered with ID: %s", username, session.user_id)
    return session


async def set_display_name(transport: Transport, session: Session, display_name: str) -> None:
    """Set the profile display name of the session's user."""
    await transport.request(
        "PUT",
        f"/_matrix/client/v3/profile/{quote(session.user_id, safe='')}/displayname",
        token=session.access_token,
        body={"displayname": display_name},
    )
