"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import pytest
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from hubwire.client import Client, connect
from hubwire.core.config import ConnectionConfig, HomeAssistantConfig, ReconnectConfig
from hubwire.protocol.messages import (
    make_auth_invalid,
    make_auth_ok,
    make_auth_required,
    make_result,
)

TOKEN = "t"


class FakeHub:
    """Scripted stand-in for a hub, served on an ephemeral local port.

    Runs the handshake itself and queues every later client frame in
    ``received`` for the test to inspect and answer.
    """

    def __init__(self, token: str = TOKEN) -> None:
        self.token = token
        self.auth_frames: list[dict[str, Any]] = []
        self.received: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.sessions: asyncio.Queue[ServerConnection] = asyncio.Queue()
        self.connection_count = 0
        self.ws: ServerConnection | None = None
        self._server: Server | None = None

    @property
    def port(self) -> int:
        assert self._server is not None
        return self._server.sockets[0].getsockname()[1]

    @property
    def uri(self) -> str:
        return f"127.0.0.1:{self.port}"

    async def start(self) -> None:
        self._server = await serve(self._handle, "127.0.0.1", 0)

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def _handle(self, ws: ServerConnection) -> None:
        self.connection_count += 1
        await ws.send(make_auth_required())
        try:
            auth = json.loads(await ws.recv())
        except ConnectionClosed:
            return
        self.auth_frames.append(auth)

        if auth.get("type") != "auth" or auth.get("access_token") != self.token:
            await ws.send(make_auth_invalid())
            return

        await ws.send(make_auth_ok())
        self.ws = ws
        self.sessions.put_nowait(ws)

        try:
            async for message in ws:
                self.received.put_nowait(json.loads(message))
        except ConnectionClosed:
            pass

    async def next_frame(self, timeout: float = 2.0) -> dict[str, Any]:
        """Wait for the next frame sent by the client after authentication."""
        return await asyncio.wait_for(self.received.get(), timeout)

    async def next_session(self, timeout: float = 2.0) -> ServerConnection:
        """Wait for the next authenticated connection."""
        return await asyncio.wait_for(self.sessions.get(), timeout)

    async def accept_subscription(self) -> dict[str, Any]:
        """Answer the client's automatic ``subscribe_events`` request."""
        frame = await self.next_frame()
        assert frame["type"] == "subscribe_events"
        await self.send(make_result(frame["id"]))
        return frame

    async def send(self, text: str) -> None:
        assert self.ws is not None
        await self.ws.send(text)

    async def drop(self) -> None:
        """Close the current connection from the hub side."""
        assert self.ws is not None
        await self.ws.close()

    def stall(self) -> None:
        """Stop reading the current connection, leaving pings unanswered."""
        assert self.ws is not None
        self.ws.transport.pause_reading()

    def unstall(self) -> None:
        assert self.ws is not None
        self.ws.transport.resume_reading()


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


@pytest.fixture
async def hub() -> FakeHub:
    """Start a fake hub for the duration of a test."""
    hub = FakeHub()
    await hub.start()
    yield hub
    await hub.stop()


@pytest.fixture
def ha_config(hub: FakeHub) -> HomeAssistantConfig:
    """Endpoint configuration pointing at the fake hub."""
    return HomeAssistantConfig(uri=hub.uri, token=TOKEN)


@pytest.fixture
def options() -> ConnectionConfig:
    """Connection settings with short timeouts and quick reconnects."""
    return ConnectionConfig(
        ping_interval=30.0,
        connect_timeout=2.0,
        reconnect=ReconnectConfig(initial_delay=0.01, max_delay=0.05, max_attempts=3),
    )


@pytest.fixture
async def client(hub: FakeHub, ha_config: HomeAssistantConfig, options: ConnectionConfig) -> Client:
    """Connected client whose event subscription has been accepted."""
    client = await connect(ha_config, options)
    await hub.next_session()
    await hub.accept_subscription()
    yield client
    await client.close()
