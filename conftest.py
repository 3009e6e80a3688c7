"""Shared fixtures: an in-memory stand-in for the websockets transport."""

import asyncio
from typing import List, Optional

import pytest

from protocol import encode_event, make_event


class FakeSocket:
    """Scripted WebSocket: frames pushed here are yielded to the reader."""

    def __init__(self):
        self.sent: List[str] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    def push(self, frame: str) -> None:
        self._incoming.put_nowait(frame)

    def drop(self) -> None:
        """Simulate the backend going away."""
        self._incoming.put_nowait(None)

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is None:
            self.closed = True
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Transport factory. ``script`` lists outcomes per call: "ok" or "fail"."""

    def __init__(self, script: Optional[List[str]] = None):
        self.script = list(script or [])
        self.sockets: List[FakeSocket] = []
        self.calls = 0
        self.urls: List[str] = []

    async def __call__(self, url: str) -> FakeSocket:
        self.calls += 1
        self.urls.append(url)
        outcome = self.script.pop(0) if self.script else "ok"
        if outcome == "fail":
            raise ConnectionRefusedError("connection refused")
        sock = FakeSocket()
        self.sockets.append(sock)
        return sock


async def until(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0)


def event_frame(event_type: str, **fields) -> str:
    return encode_event(make_event(event_type, **fields))


@pytest.fixture
def connector():
    return FakeConnector()
