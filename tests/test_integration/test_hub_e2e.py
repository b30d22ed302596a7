"""End-to-end tests against a local hub double.

Each test runs a real WebSocket server and drives the client through a
full session: handshake, multiplexed requests, pushed events, outages.
"""

from __future__ import annotations

import asyncio

import pytest
from conftest import FakeHub, wait_until
from websockets.asyncio.server import ServerConnection, serve

from hubwire.client import Client, EventStream, connect
from hubwire.core.config import ConnectionConfig, HomeAssistantConfig, ReconnectConfig
from hubwire.errors import ClientClosedError, ConnectionLostError
from hubwire.protocol.messages import (
    GetStates,
    ListAreas,
    StateChanged,
    make_auth_required,
    make_event,
    make_result,
)
from hubwire.protocol.services import GenericService, LightToggle


def _state_changed(entity_id: str, new: str = "on") -> str:
    return make_event(1, StateChanged(entity_id, {"state": "off"}, {"state": new}))


async def _next(stream: EventStream) -> StateChanged:
    return await asyncio.wait_for(anext(stream), 2.0)


class TestHandshake:
    @pytest.mark.asyncio
    async def test_auth_then_subscription(
        self, hub: FakeHub, ha_config: HomeAssistantConfig, options: ConnectionConfig
    ) -> None:
        """The token goes out unnumbered, then the feed is requested as id 1."""
        client = await connect(ha_config, options)
        try:
            await hub.next_session()
            subscription = await hub.accept_subscription()

            assert hub.auth_frames == [{"type": "auth", "access_token": "t"}]
            assert subscription == {
                "id": 1,
                "type": "subscribe_events",
                "event_type": "state_changed",
            }
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_unfiltered_subscription(
        self, hub: FakeHub, ha_config: HomeAssistantConfig
    ) -> None:
        client = await connect(ha_config, ConnectionConfig(event_type=None))
        try:
            assert await hub.next_frame() == {"id": 1, "type": "subscribe_events"}
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_drop_during_handshake(self) -> None:
        """A hub that hangs up before auth_ok fails connect without retrying."""
        attempts = 0

        async def hang_up(ws: ServerConnection) -> None:
            nonlocal attempts
            attempts += 1
            await ws.send(make_auth_required())
            await ws.recv()
            await ws.close()

        async with serve(hang_up, "127.0.0.1", 0) as server:
            port = server.sockets[0].getsockname()[1]
            config = HomeAssistantConfig(uri=f"127.0.0.1:{port}", token="t")
            with pytest.raises(ConnectionLostError):
                await connect(config, ConnectionConfig(connect_timeout=2.0))

        assert attempts == 1


class TestMultiplexing:
    """Concurrent requests share one socket."""

    @pytest.mark.asyncio
    async def test_out_of_order_replies(self, client: Client, hub: FakeHub) -> None:
        first = asyncio.create_task(client.request(GetStates()))
        frame_a = await hub.next_frame()
        second = asyncio.create_task(client.request(ListAreas()))
        frame_b = await hub.next_frame()
        assert frame_a["id"] != frame_b["id"]

        await hub.send(make_result(frame_b["id"], ["areas"]))
        await hub.send(make_result(frame_a["id"], ["states"]))

        assert await first == ["states"]
        assert await second == ["areas"]

    @pytest.mark.asyncio
    async def test_concurrent_callers(self, client: Client, hub: FakeHub) -> None:
        """Every caller gets the reply to its own request."""
        targets = [f"light.lamp_{i}" for i in range(20)]
        tasks = [
            asyncio.create_task(client.call_service(target, LightToggle())) for target in targets
        ]

        frames = [await hub.next_frame() for _ in targets]
        assert len({frame["id"] for frame in frames}) == len(targets)

        for frame in reversed(frames):
            await hub.send(make_result(frame["id"], {"echo": frame["target"]["entity_id"]}))

        results = await asyncio.gather(*tasks)
        assert [result["echo"] for result in results] == targets

    @pytest.mark.asyncio
    async def test_request_ids_increase(self, client: Client, hub: FakeHub) -> None:
        for expected in (2, 3):
            task = asyncio.create_task(client.request(GetStates()))
            frame = await hub.next_frame()
            assert frame["id"] == expected
            await hub.send(make_result(frame["id"], []))
            await task

    @pytest.mark.asyncio
    async def test_unencodable_request_fails_alone(self, client: Client, hub: FakeHub) -> None:
        """Service data JSON cannot carry fails that call and nothing else."""
        in_flight = asyncio.create_task(client.request(GetStates()))
        assert (await hub.next_frame())["id"] == 2

        action = GenericService(
            service_domain="light", service_name="turn_on", data={"when": {1, 2}}
        )
        with pytest.raises(TypeError):
            await client.call_service("light.den", action)
        assert not client.closed

        await hub.send(make_result(2, ["states"]))
        assert await in_flight == ["states"]

        after = asyncio.create_task(client.request(ListAreas()))
        assert (await hub.next_frame())["id"] == 3
        await hub.send(make_result(3, []))
        assert await after == []
        assert client.stats().reconnects == 0


class TestEvents:
    """Pushed events reach every subscriber."""

    @pytest.mark.asyncio
    async def test_fan_out(self, client: Client, hub: FakeHub) -> None:
        first = client.subscribe()
        second = client.subscribe()

        await hub.send(_state_changed("light.kitchen"))

        for stream in (first, second):
            event = await _next(stream)
            assert event.entity_id == "light.kitchen"
            assert event.new_state == {"state": "on"}

        late = client.subscribe()
        await hub.send(_state_changed("light.hall"))

        assert (await _next(late)).entity_id == "light.hall"
        assert (await _next(first)).entity_id == "light.hall"
        assert client.stats().events_published == 2

    @pytest.mark.asyncio
    async def test_subscribers_share_event(self, client: Client, hub: FakeHub) -> None:
        first = client.subscribe()
        second = client.subscribe()
        await hub.send(_state_changed("switch.fan"))
        assert (await _next(first)) is (await _next(second))

    @pytest.mark.asyncio
    async def test_slow_subscriber_lags(
        self, hub: FakeHub, ha_config: HomeAssistantConfig
    ) -> None:
        """A stream that falls behind skips ahead and counts what it missed."""
        client = await connect(ha_config, ConnectionConfig(event_buffer=2))
        try:
            stream = client.subscribe()
            await hub.next_session()
            for i in range(5):
                await hub.send(_state_changed(f"light.l{i}"))
            await wait_until(lambda: client.stats().events_published == 5)

            assert (await _next(stream)).entity_id == "light.l3"
            assert (await _next(stream)).entity_id == "light.l4"
            assert stream.missed == 3
        finally:
            await client.close()


class TestConnectionLoss:
    @pytest.mark.asyncio
    async def test_close_fails_in_flight(self, client: Client, hub: FakeHub) -> None:
        task = asyncio.create_task(client.request(GetStates()))
        await hub.next_frame()

        await client.close()

        with pytest.raises(ConnectionLostError):
            await task

    @pytest.mark.asyncio
    async def test_reconnect_replays_handshake(self, client: Client, hub: FakeHub) -> None:
        """After a drop the actor re-authenticates, resubscribes, and resumes."""
        lost = asyncio.create_task(client.request(GetStates()))
        await hub.next_frame()

        await hub.drop()
        with pytest.raises(ConnectionLostError):
            await lost
        queued = asyncio.create_task(client.request(ListAreas()))

        await hub.next_session()
        subscription = await hub.accept_subscription()
        assert subscription["id"] == 1

        frame = await hub.next_frame()
        assert frame == {"id": 2, "type": "config/area_registry/list"}
        await hub.send(make_result(2, []))

        assert await queued == []
        assert hub.connection_count == 2
        assert hub.auth_frames == [{"type": "auth", "access_token": "t"}] * 2
        assert client.stats().reconnects == 1
        assert not client.closed

    @pytest.mark.asyncio
    async def test_events_resume_after_reconnect(self, client: Client, hub: FakeHub) -> None:
        stream = client.subscribe()
        await hub.drop()
        await hub.next_session()
        await hub.accept_subscription()

        await hub.send(_state_changed("light.porch"))
        assert (await _next(stream)).entity_id == "light.porch"

    @pytest.mark.asyncio
    async def test_token_rejected_on_reconnect(self, client: Client, hub: FakeHub) -> None:
        """A hub that refuses the token after a drop ends the client."""
        stream = client.subscribe()
        hub.token = "rotated"
        await hub.drop()
        await wait_until(lambda: hub.connection_count == 2)
        queued = asyncio.create_task(client.request(ListAreas()))

        await wait_until(lambda: client.closed)

        with pytest.raises(ClientClosedError):
            await queued
        assert [event async for event in stream] == []
        assert hub.auth_frames == [{"type": "auth", "access_token": "t"}] * 2
        assert hub.received.empty()

    @pytest.mark.asyncio
    async def test_silent_hub_treated_as_drop(
        self, hub: FakeHub, ha_config: HomeAssistantConfig
    ) -> None:
        """Pings left unanswered fail in-flight requests, then the session is rebuilt."""
        options = ConnectionConfig(
            ping_interval=0.05,
            pong_timeout=0.2,
            reconnect=ReconnectConfig(initial_delay=0.01, max_delay=0.05, max_attempts=3),
        )
        client = await connect(ha_config, options)
        try:
            await hub.next_session()
            await hub.accept_subscription()
            lost = asyncio.create_task(client.request(GetStates()))
            await hub.next_frame()

            hub.stall()
            await asyncio.sleep(1.0)
            # Let the client's close handshake through
            hub.unstall()

            with pytest.raises(ConnectionLostError):
                await asyncio.wait_for(lost, 2.0)

            await hub.next_session()
            await hub.accept_subscription()
            assert hub.connection_count == 2
            assert client.stats().reconnects == 1
            assert not client.closed
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, client: Client, hub: FakeHub) -> None:
        stream = client.subscribe()
        await hub.stop()

        await wait_until(lambda: client.closed, timeout=5.0)

        with pytest.raises(ClientClosedError):
            await client.request(GetStates())
        assert [event async for event in stream] == []

    @pytest.mark.asyncio
    async def test_reconnect_disabled(self, hub: FakeHub, ha_config: HomeAssistantConfig) -> None:
        options = ConnectionConfig(reconnect=ReconnectConfig(enabled=False))
        client = await connect(ha_config, options)
        await hub.next_session()

        await hub.drop()

        await wait_until(lambda: client.closed)
        assert hub.connection_count == 1
