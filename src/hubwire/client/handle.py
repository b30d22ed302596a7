"""Public client handle.

``connect()`` returns a ``Client`` once the hub has accepted the token.
The client has no state of its own: it forwards requests to the connection
actor's inbox and hands out event streams from the bus, so any number of
tasks may share one instance (or copies of it).

Example:
    async with await connect(HomeAssistantConfig(uri="hub.local:8123", token=token)) as client:
        states = await client.get_states()
        async for event in client.subscribe():
            print(event.entity_id, event.new_state)
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import dataclasses
from typing import Any, TypeVar, overload

import structlog

from hubwire.client.connection import ConnectionActor, ConnectionStats
from hubwire.core.bus import EventBus, EventReceiver
from hubwire.core.config import ConnectionConfig, HomeAssistantConfig
from hubwire.errors import EventBusClosed, EventsLagged
from hubwire.protocol.messages import (
    CallService,
    Event,
    GetStates,
    ListAreas,
    ListDevices,
    ListEntities,
    RequestOperation,
)
from hubwire.protocol.responses import (
    Area,
    AreaList,
    Device,
    DeviceList,
    Entity,
    EntityList,
    EntityState,
    StateList,
)
from hubwire.protocol.services import ServiceAction

log = structlog.get_logger()

T = TypeVar("T")


class EventStream:
    """Async iterator over bus events for one subscriber.

    Lag is absorbed: missed events are counted in ``missed`` and iteration
    continues with the oldest event still available. Iteration stops when
    the client closes.
    """

    def __init__(self, receiver: EventReceiver[Event]) -> None:
        self._receiver = receiver
        self.missed = 0

    def __aiter__(self) -> EventStream:
        return self

    async def __anext__(self) -> Event:
        while True:
            try:
                return await self._receiver.recv()
            except EventsLagged as e:
                self.missed += e.skipped
                log.warning("Event subscriber lagged", skipped=e.skipped, missed=self.missed)
            except EventBusClosed:
                raise StopAsyncIteration from None


class Client:
    """Handle for issuing requests and subscribing to events."""

    def __init__(self, actor: ConnectionActor, bus: EventBus[Event]) -> None:
        self._actor = actor
        self._bus = bus
        self._loop = asyncio.get_running_loop()

    @property
    def closed(self) -> bool:
        """Whether the underlying connection has terminated."""
        return self._actor.closed

    @overload
    async def request(self, operation: RequestOperation) -> Any: ...

    @overload
    async def request(self, operation: RequestOperation, *, model: type[T]) -> T: ...

    async def request(self, operation: RequestOperation, *, model: Any = None) -> Any:
        """Send a request and wait for its result.

        Args:
            operation: The command to send
            model: Optional type to validate the payload into

        Returns:
            Decoded JSON result, or an instance of ``model``

        Raises:
            ConnectionLostError: If the connection drops before the reply
            ClientClosedError: If the client is closed
            RequestError: If the hub reports a failure
            TypeError: If the operation's data cannot be encoded as JSON
        """
        payload = await self._actor.submit(operation)
        if model is None:
            return payload.value
        return payload.decode(model)

    def request_threadsafe(
        self, operation: RequestOperation, *, model: Any = None
    ) -> concurrent.futures.Future[Any]:
        """Schedule ``request`` from a thread outside the client's event loop."""
        return asyncio.run_coroutine_threadsafe(
            self.request(operation, model=model), self._loop
        )

    def subscribe(self) -> EventStream:
        """Return a new stream of events published from now on."""
        return EventStream(self._bus.subscribe())

    async def get_states(self) -> list[EntityState]:
        return await self.request(GetStates(), model=StateList)

    async def list_areas(self) -> list[Area]:
        return await self.request(ListAreas(), model=AreaList)

    async def list_entities(self) -> list[Entity]:
        return await self.request(ListEntities(), model=EntityList)

    async def list_devices(self) -> list[Device]:
        return await self.request(ListDevices(), model=DeviceList)

    async def call_service(self, target: str, action: ServiceAction) -> Any:
        """Invoke ``action`` on entity ``target``."""
        return await self.request(CallService(target=target, action=action))

    def stats(self) -> ConnectionStats:
        """Snapshot of the connection counters."""
        return dataclasses.replace(self._actor.stats)

    async def close(self) -> None:
        """Close the connection. Pending and queued requests fail."""
        await self._actor.stop()

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


async def connect(
    config: HomeAssistantConfig,
    options: ConnectionConfig | None = None,
) -> Client:
    """Connect to the hub and wait until authenticated.

    Args:
        config: Hub endpoint and token
        options: Connection settings (defaults if omitted)

    Returns:
        Ready client

    Raises:
        TransportError: If the socket cannot be opened
        AuthenticationError: If the hub rejects the token
        ConnectionLostError: If the socket drops during the handshake
    """
    options = options or ConnectionConfig()
    bus: EventBus[Event] = EventBus(options.event_buffer)
    actor = ConnectionActor(config, options, bus)
    await actor.start()
    return Client(actor, bus)
