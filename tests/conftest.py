"""Shared fixtures: a local WebSocket server and scriptable fake sockets."""

import asyncio
import socket

import pytest
import pytest_asyncio
from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed


class MockServer:
    """Records every text message and connection it receives."""

    def __init__(self):
        self.url = None
        self.received = []
        self.connections = []
        self.headers = []
        self._changed = asyncio.Event()

    async def handler(self, websocket):
        self.connections.append(websocket)
        self.headers.append(websocket.request.headers)
        self._changed.set()
        try:
            async for message in websocket:
                self.received.append(message)
                self._changed.set()
        except ConnectionClosed:
            pass

    async def wait_for(self, predicate, timeout=2.0):
        async def _wait():
            while not predicate():
                self._changed.clear()
                await self._changed.wait()
        await asyncio.wait_for(_wait(), timeout)


class FakeConnection:
    """Stands in for a websockets ClientConnection."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self.send_error = None
        self.close_delay = 0.0
        self.release = asyncio.Event()
        self.release.set()
        self._incoming = asyncio.Queue()

    async def send(self, message):
        await self.release.wait()
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(message)

    async def recv(self):
        item = await self._incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    def feed(self, item):
        self._incoming.put_nowait(item)

    async def close(self, code=1000, reason=""):
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        self.closed = True


class FakeConnector:
    """Socket factory that either fails or hands out FakeConnections."""

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = 0
        self.kwargs = []
        self.connections = []

    async def __call__(self, url, **kwargs):
        self.calls += 1
        self.kwargs.append(kwargs)
        if self.fail:
            raise ConnectionRefusedError("refused")
        conn = FakeConnection()
        self.connections.append(conn)
        return conn


@pytest_asyncio.fixture
async def mock_server():
    server = MockServer()
    async with serve(server.handler, "127.0.0.1", 0) as ws_server:
        port = next(iter(ws_server.sockets)).getsockname()[1]
        server.url = f"ws://127.0.0.1:{port}"
        yield server


@pytest.fixture
def fake_connector():
    return FakeConnector()


@pytest.fixture
def failing_connector():
    return FakeConnector(fail=True)


@pytest.fixture
def refused_url():
    """URL of a local port nothing listens on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    return f"ws://127.0.0.1:{port}"


@pytest.fixture
def wait_until():
    async def _wait_until(predicate, timeout=2.0, interval=0.01):
        async def _poll():
            while not predicate():
                await asyncio.sleep(interval)
        await asyncio.wait_for(_poll(), timeout)
    return _wait_until
