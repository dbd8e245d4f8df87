"""Authenticated JSON requests against the homeserver REST surface."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

import aiohttp

from conduit_client.errors import ProtocolError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT_S = 30.0


class Transport(Protocol):
    """Anything able to issue a JSON request to the homeserver."""

    async def request(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        body: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]: ...


def _parse_error(text: str) -> tuple[str | None, str]:
    """Extract ``(errcode, error)`` from a Matrix error body, if it is one."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None, text
    if not isinstance(data, dict):
        return None, text
    return data.get("errcode"), data.get("error", text)


def decode_json_object(text: str, operation: str) -> dict[str, Any]:
    """Decode a successful response body, which must be a JSON object."""
    try:
        data = json.loads(text) if text else {}
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Response is not valid JSON: {e}", operation=operation) from e
    if not isinstance(data, dict):
        raise ProtocolError(
            f"Expected a JSON object, got {type(data).__name__}", operation=operation
        )
    return data


class HttpTransport:
    """Transport backed by an ``aiohttp.ClientSession``.

    Retries are never attempted here; callers decide whether a
    ``TransportError`` is worth another try.
    """

    def __init__(
        self,
        homeserver: str,
        *,
        ssl_verify: bool = True,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_S,
    ) -> None:
        self.homeserver = homeserver.rstrip("/")
        self.ssl_verify = ssl_verify
        self.request_timeout = request_timeout
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> HttpTransport:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def request(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        body: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send one request and return the decoded JSON object."""
        operation = f"{method} {path}"
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        client_timeout = aiohttp.ClientTimeout(total=timeout or self.request_timeout)
        logger.debug("-> %s", operation)

        try:
            async with self._get_session().request(
                method,
                f"{self.homeserver}{path}",
                json=body,
                params=params,
                headers=headers,
                ssl=self.ssl_verify,
                timeout=client_timeout,
            ) as response:
                status = response.status
                text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(
                f"Request failed: {e or type(e).__name__}", operation=operation
            ) from e

        logger.debug("<- %s %s", status, operation)

        if not 200 <= status < 300:
            errcode, server_message = _parse_error(text)
            raise TransportError(
                f"HTTP {status}",
                operation=operation,
                status=status,
                errcode=errcode,
                server_message=server_message,
                body=text,
            )

        return decode_json_object(text, operation)
