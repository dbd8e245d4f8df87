"""Conduit client - a small Matrix client core and test harness."""

from conduit_client.errors import (
    AuthError,
    ConfigError,
    MatrixClientError,
    NotFoundError,
    ProtocolError,
    RegistrationError,
    TransportError,
)
from conduit_client.models import (
    Membership,
    Message,
    RegistrationResult,
    RegistrationStatus,
    Room,
    RoomDelta,
    Session,
    SyncResult,
)
from conduit_client.rooms import RoomIndex
from conduit_client.session import login, register_user, set_display_name
from conduit_client.sync import BackoffPolicy, SyncEngine, parse_sync_response
from conduit_client.transport import HttpTransport, Transport

__all__ = [
    "AuthError",
    "BackoffPolicy",
    "ConfigError",
    "HttpTransport",
    "MatrixClientError",
    "Membership",
    "Message",
    "NotFoundError",
    "ProtocolError",
    "RegistrationError",
    "RegistrationResult",
    "RegistrationStatus",
    "Room",
    "RoomDelta",
    "RoomIndex",
    "Session",
    "SyncEngine",
    "SyncResult",
    "Transport",
    "TransportError",
    "login",
    "parse_sync_response",
    "register_user",
    "set_display_name",
]
