"""Shared test fixtures for rxinterpals tests."""

import asyncio
import json
from typing import Any

import pytest
from opentelemetry.sdk._logs import LoggerProvider

from rxinterpals.auth import SessionCredentials
from rxinterpals.gateway import TransportClosed


class FakeTransport:
    """In-memory gateway transport.

    Frames pushed with :meth:`feed` come out of :meth:`recv` in order.
    ``auto_pong=False`` makes every ping hang, so only the pong timer can
    end it.
    """

    def __init__(self, auto_pong: bool = True):
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.sent: list[Any] = []
        self.pings = 0
        self.auto_pong = auto_pong
        self.closed = False
        self.aborted = False

    @property
    def is_open(self) -> bool:
        return not self.closed

    def feed(self, frame: dict | str | bytes) -> None:
        self.inbox.put_nowait(json.dumps(frame) if isinstance(frame, dict) else frame)

    async def recv(self):
        item = await self.inbox.get()
        if isinstance(item, TransportClosed):
            raise item
        return item

    async def send(self, data: str) -> None:
        if self.closed:
            raise TransportClosed(1006, "closed")
        self.sent.append(json.loads(data))

    async def ping(self) -> None:
        self.pings += 1
        if not self.auto_pong:
            await asyncio.Event().wait()

    async def close(self) -> None:
        self._shut(1000, "normal")

    def abort(self) -> None:
        self.aborted = True
        self._shut(1006, "abort")

    def _shut(self, code: int, reason: str) -> None:
        if not self.closed:
            self.closed = True
            self.inbox.put_nowait(TransportClosed(code, reason))


class FakeConnector:
    """Connector handing out :class:`FakeTransport` objects.

    ``pong_plan`` gives ``auto_pong`` per attempt (the last entry repeats);
    ``failures`` makes that many upcoming attempts raise ``OSError``.
    """

    def __init__(self, pong_plan: list[bool] | None = None, delay: float = 0.0):
        self.pong_plan = pong_plan or [True]
        self.delay = delay
        self.failures = 0
        self.attempts = 0
        self.urls: list[str] = []
        self.headers: list[dict[str, str]] = []
        self.transports: list[FakeTransport] = []

    async def __call__(self, url: str, headers: dict[str, str]) -> FakeTransport:
        self.attempts += 1
        self.urls.append(url)
        self.headers.append(headers)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            self.failures -= 1
            raise OSError("connection refused")
        index = min(len(self.transports), len(self.pong_plan) - 1)
        transport = FakeTransport(auto_pong=self.pong_plan[index])
        self.transports.append(transport)
        return transport


class FakeRest:
    """Scripted :class:`~rxinterpals.rest.RestTransport`.

    ``replies`` maps ``(METHOD, path)`` to a value, an exception to raise,
    or a callable ``(params_or_body) -> value``.
    """

    def __init__(self, replies: dict[tuple[str, str], Any] | None = None):
        self.replies = replies or {}
        self.calls: list[tuple[str, str, Any]] = []

    def reply(self, method: str, path: str, value: Any) -> None:
        self.replies[(method, path)] = value

    def count(self, method: str, path: str | None = None) -> int:
        return sum(
            1 for m, p, _ in self.calls if m == method and (path is None or p == path)
        )

    def _answer(self, method: str, path: str, argument: Any) -> Any:
        self.calls.append((method, path, argument))
        value = self.replies.get((method, path))
        if isinstance(value, Exception):
            raise value
        if callable(value):
            return value(argument)
        if isinstance(value, dict):
            return dict(value)
        return value

    async def get(self, path, params=None):
        return self._answer("GET", path, params)

    async def post(self, path, data=None, params=None):
        return self._answer("POST", path, data)

    async def put(self, path, data=None, params=None):
        return self._answer("PUT", path, data)

    async def delete(self, path, params=None):
        return self._answer("DELETE", path, params)


@pytest.fixture
def logger_provider():
    """A LoggerProvider with no processors, so tests stay quiet."""
    return LoggerProvider()


@pytest.fixture
def credentials():
    return SessionCredentials(auth_token="tok-123", session_id="sess-456")


@pytest.fixture
def rest():
    return FakeRest()


@pytest.fixture
def connector():
    return FakeConnector()
