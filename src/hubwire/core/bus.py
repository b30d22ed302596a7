"""Fan-out event bus.

The bus replicates every published event to every receiver. It keeps the
last ``capacity`` events in a ring; each receiver only holds a cursor into
that ring, so publishing never blocks and never waits on a consumer.

Semantics:
    - A receiver sees events published after it subscribed, never earlier.
    - A receiver that falls more than ``capacity`` events behind gets
      ``EventsLagged`` from its next ``recv()`` and then resumes with the
      oldest event still retained.
    - Receivers are held weakly; dropping one is enough to unsubscribe.
"""

from __future__ import annotations

import asyncio
import weakref
from collections import deque
from typing import Generic, TypeVar

from hubwire.errors import EventBusClosed, EventsLagged

T = TypeVar("T")


class EventBus(Generic[T]):
    """Bounded broadcast channel for a single publisher.

    Example:
        bus = EventBus(capacity=64)
        rx = bus.subscribe()
        bus.publish(event)
        event = await rx.recv()
    """

    def __init__(self, capacity: int = 256) -> None:
        """Initialize the bus.

        Args:
            capacity: Number of events retained for slow receivers
        """
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._buffer: deque[T] = deque(maxlen=capacity)
        self._head = 0  # sequence number of _buffer[0]
        self._next_seq = 0
        self._closed = False
        self._changed: asyncio.Future[None] | None = None
        self._receivers: weakref.WeakSet[EventReceiver[T]] = weakref.WeakSet()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def receiver_count(self) -> int:
        """Number of live receivers."""
        return len(self._receivers)

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self) -> EventReceiver[T]:
        """Register a new receiver starting at the next published event."""
        receiver = EventReceiver(self, self._next_seq)
        self._receivers.add(receiver)
        return receiver

    def publish(self, event: T) -> int:
        """Publish an event to all receivers.

        Returns:
            Number of receivers alive at publish time

        Raises:
            EventBusClosed: If the bus has been closed
        """
        if self._closed:
            raise EventBusClosed("Cannot publish on a closed bus")
        if len(self._buffer) == self._capacity:
            self._head += 1
        self._buffer.append(event)
        self._next_seq += 1
        self._notify()
        return len(self._receivers)

    def close(self) -> None:
        """Close the bus. Receivers drain what is retained, then stop."""
        if self._closed:
            return
        self._closed = True
        self._notify()

    def _notify(self) -> None:
        if self._changed is not None and not self._changed.done():
            self._changed.set_result(None)
        self._changed = None

    async def _wait(self) -> None:
        if self._changed is None:
            self._changed = asyncio.get_running_loop().create_future()
        # Shielded: one cancelled receiver must not cancel the shared waiter
        await asyncio.shield(self._changed)


class EventReceiver(Generic[T]):
    """A single subscriber's cursor into an ``EventBus``."""

    def __init__(self, bus: EventBus[T], cursor: int) -> None:
        self._bus = bus
        self._cursor = cursor

    @property
    def pending(self) -> int:
        """Events published but not yet received (including lost ones)."""
        return self._bus._next_seq - self._cursor

    def try_recv(self) -> T | None:
        """Return the next event without waiting, or ``None`` if none is ready.

        Raises:
            EventsLagged: If events were lost since the last call
            EventBusClosed: If the bus is closed and drained
        """
        bus = self._bus
        if self._cursor < bus._head:
            skipped = bus._head - self._cursor
            self._cursor = bus._head
            raise EventsLagged(skipped)
        if self._cursor < bus._next_seq:
            event = bus._buffer[self._cursor - bus._head]
            self._cursor += 1
            return event
        if bus._closed:
            raise EventBusClosed("Event bus closed")
        return None

    async def recv(self) -> T:
        """Wait for the next event.

        Raises:
            EventsLagged: If events were lost since the last call
            EventBusClosed: If the bus is closed and drained
        """
        while True:
            event = self.try_recv()
            if event is not None:
                return event
            await self._bus._wait()
