"""Duplex transport underneath the gateway connection.

:class:`GatewayConnection` only talks to the small :class:`Transport`
protocol below. The default implementation wraps a ``websockets`` asyncio
client connection; tests plug in an in-memory transport through the
connection's ``connector`` argument.
"""

from collections.abc import Awaitable, Callable
from typing import Protocol

import websockets
from websockets import ClientConnection
from websockets.exceptions import ConnectionClosed, InvalidStatus
from websockets.protocol import State

from ..errors import AuthenticationError


class TransportClosed(Exception):
    """Raised by :meth:`Transport.recv` and :meth:`Transport.send` once the
    transport is closed."""

    def __init__(self, code: int | None = None, reason: str = ""):
        super().__init__(f"Transport closed (code={code}, reason={reason!r})")
        self.code = code
        self.reason = reason


class Transport(Protocol):
    @property
    def is_open(self) -> bool: ...

    async def recv(self) -> str | bytes: ...

    async def send(self, data: str) -> None: ...

    async def ping(self) -> None:
        """Send a ping and wait for the matching pong."""
        ...

    async def close(self) -> None: ...

    def abort(self) -> None:
        """Drop the connection without a closing handshake."""
        ...


Connector = Callable[[str, dict[str, str]], Awaitable[Transport]]


def _closed(e: ConnectionClosed) -> TransportClosed:
    frame = e.rcvd or e.sent
    if frame is None:
        return TransportClosed(1006, "")
    return TransportClosed(frame.code, frame.reason)


class WebSocketTransport:
    """:class:`Transport` over a ``websockets`` client connection."""

    def __init__(self, ws: ClientConnection):
        self.ws = ws

    @property
    def is_open(self) -> bool:
        return self.ws.state is State.OPEN

    async def recv(self) -> str | bytes:
        try:
            return await self.ws.recv()
        except ConnectionClosed as e:
            raise _closed(e) from e

    async def send(self, data: str) -> None:
        try:
            await self.ws.send(data)
        except ConnectionClosed as e:
            raise _closed(e) from e

    async def ping(self) -> None:
        try:
            pong_waiter = await self.ws.ping()
            await pong_waiter
        except ConnectionClosed as e:
            raise _closed(e) from e

    async def close(self) -> None:
        await self.ws.close()

    def abort(self) -> None:
        self.ws.transport.abort()


async def websocket_connector(url: str, headers: dict[str, str]) -> Transport:
    """Open a websocket. Heartbeats are driven by the gateway connection,
    so the library's own keepalive pings are disabled."""
    try:
        ws = await websockets.connect(
            url,
            additional_headers=headers,
            ping_interval=None,
            max_size=None,
        )
    except InvalidStatus as e:
        if e.response.status_code in (401, 403):
            raise AuthenticationError(
                f"Gateway rejected credentials (HTTP {e.response.status_code})",
                status_code=e.response.status_code,
            ) from e
        raise
    return WebSocketTransport(ws)
