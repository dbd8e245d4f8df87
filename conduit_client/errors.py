"""Error types raised by the Conduit client core."""

from __future__ import annotations


class MatrixClientError(Exception):
    """Base error carrying enough context to diagnose a failed operation."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        target: str | None = None,
        status: int | None = None,
        errcode: str | None = None,
        server_message: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.target = target
        self.status = status
        self.errcode = errcode
        self.server_message = server_message

    def __str__(self) -> str:
        parts = [self.message]
        if self.operation:
            parts.append(f"operation={self.operation}")
        if self.target:
            parts.append(f"target={self.target}")
        if self.status is not None:
            parts.append(f"status={self.status}")
        if self.errcode:
            parts.append(f"errcode={self.errcode}")
        if self.server_message and self.server_message != self.message:
            parts.append(f"server said: {self.server_message}")
        return " | ".join(parts)


class ConfigError(MatrixClientError):
    """Invalid local input such as a malformed homeserver URL."""


class AuthError(MatrixClientError):
    """The homeserver rejected the supplied credentials."""


class TransportError(MatrixClientError):
    """Network failure or a non-2xx response."""

    def __init__(self, message: str, *, body: str = "", **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.body = body


class ProtocolError(MatrixClientError):
    """The server answered with a body we cannot interpret."""


class NotFoundError(MatrixClientError):
    """A referenced room is not known to the local room index."""


_USER_IN_USE_MARKERS = ("M_USER_IN_USE", "User ID already taken")


class RegistrationError(MatrixClientError):
    """Registration of a single account failed."""

    @property
    def already_exists(self) -> bool:
        """True when the server reported the username as taken."""
        if self.errcode == "M_USER_IN_USE":
            return True
        text = self.server_message or ""
        return any(marker in text for marker in _USER_IN_USE_MARKERS)
