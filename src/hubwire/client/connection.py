"""Connection actor for the hub WebSocket.

The actor is the only code that reads or writes frames. Everything else
talks to it through its inbox (outbound requests paired with reply
futures), its stop signal, and the event bus it publishes to.

Architecture:
    ┌───────────────────────────────────────────────┐
    │                ConnectionActor                │
    ├───────────────────────────────────────────────┤
    │   inbox ──► pending {id: future} ──► socket   │
    │   socket ──► result ──► future                │
    │   socket ──► event ──► EventBus ──► streams   │
    │   keep-alive ticker ──► ping / pong RTT       │
    └───────────────────────────────────────────────┘

State machine::

    CONNECTING → AWAITING_AUTH → READY → CLOSED
                       ▲           │
                       └─ RECONNECTING
"""

from __future__ import annotations

import asyncio
import functools
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum

import structlog
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import (
    ConnectionClosed,
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from hubwire.core.bus import EventBus
from hubwire.core.config import ConnectionConfig, HomeAssistantConfig
from hubwire.errors import (
    AuthenticationError,
    ClientClosedError,
    ConnectionLostError,
    HubwireError,
    ProtocolError,
    RequestError,
    TransportError,
)
from hubwire.protocol.messages import (
    Authenticate,
    Event,
    RawPayload,
    RequestEnvelope,
    RequestOperation,
    ResponseEnvelope,
    ResponseType,
    SubscribeEvents,
)

log = structlog.get_logger()

Reply = asyncio.Future[RawPayload]
InboxItem = tuple[RequestOperation, Reply]

PING_PAYLOAD_SIZE = 16


class ConnectionState(str, Enum):
    """Lifecycle of the connection actor."""

    CONNECTING = "connecting"
    AWAITING_AUTH = "awaiting_auth"
    READY = "ready"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass
class ConnectionStats:
    """Counters kept by the actor.

    Attributes:
        frames_received: Inbound frames of any kind
        malformed_frames: Frames rejected by the codec
        unknown_ids: Results for ids not in the pending table
        events_published: Events handed to the bus
        unhandled_events: Events of a type the client does not decode
        abandoned_replies: Replies whose caller had already given up
        reconnects: Successful reconnections
        last_rtt: Latest keep-alive round trip in seconds
    """

    frames_received: int = 0
    malformed_frames: int = 0
    unknown_ids: int = 0
    events_published: int = 0
    unhandled_events: int = 0
    abandoned_replies: int = 0
    reconnects: int = 0
    last_rtt: float | None = None


def encode_ping_payload(timestamp_ns: int) -> bytes:
    """Pack a nanosecond timestamp as 16 big-endian signed bytes."""
    return timestamp_ns.to_bytes(PING_PAYLOAD_SIZE, "big", signed=True)


def decode_ping_payload(data: bytes) -> int:
    """Inverse of ``encode_ping_payload``.

    Raises:
        ValueError: If the payload has the wrong size
    """
    if len(data) != PING_PAYLOAD_SIZE:
        raise ValueError(f"Ping payload must be {PING_PAYLOAD_SIZE} bytes, got {len(data)}")
    return int.from_bytes(data, "big", signed=True)


async def open_transport(url: str, *, timeout: float) -> ClientConnection:
    """Open the WebSocket to the hub.

    Library keep-alive is disabled; the actor sends its own pings.

    Raises:
        TransportError: If the socket cannot be opened
    """
    try:
        return await asyncio.wait_for(
            connect(url, ping_interval=None, close_timeout=5, max_size=None),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise TransportError("WebSocket connection timed out") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise TransportError("WebSocket handshake failed") from err
    except (OSError, WebSocketException) as err:
        raise TransportError("WebSocket connection failed") from err


def _fail(reply: Reply, exc: BaseException) -> None:
    if not reply.done():
        reply.set_exception(exc)


class ConnectionActor:
    """Sole owner of the hub socket.

    Example:
        actor = ConnectionActor(ha_config, ConnectionConfig(), bus)
        await actor.start()  # returns once authenticated
        reply = actor.submit(GetStates())
        payload = await reply
    """

    def __init__(
        self,
        config: HomeAssistantConfig,
        options: ConnectionConfig,
        bus: EventBus[Event],
    ) -> None:
        """Initialize the actor.

        Args:
            config: Hub endpoint and token
            options: Keep-alive, timeout and reconnection settings
            bus: Bus receiving decoded events
        """
        self._config = config
        self._options = options
        self._bus = bus

        self._state = ConnectionState.CONNECTING
        self._inbox: asyncio.Queue[InboxItem] = asyncio.Queue()
        self._held: deque[InboxItem] = deque()
        self._pending: dict[int, Reply] = {}
        self._counter = 0

        self._stop = asyncio.Event()
        self._closed = asyncio.Event()
        self._ready: asyncio.Future[None] | None = None
        self._task: asyncio.Task[None] | None = None

        self._attempt = 0
        self._next_ping = 0.0
        self._unanswered_since: float | None = None

        self.stats = ConnectionStats()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def start(self) -> None:
        """Open the transport and wait until authenticated.

        Raises:
            TransportError: If the socket cannot be opened or the
                handshake does not finish within ``connect_timeout``
            AuthenticationError: If the hub rejects the token
            ConnectionLostError: If the socket drops during the handshake
        """
        url = self._config.websocket_url
        log.info("Connecting", url=url)
        ws = await open_transport(url, timeout=self._options.connect_timeout)

        self._ready = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run(ws), name="hubwire-connection")

        try:
            await asyncio.wait_for(asyncio.shield(self._ready), self._options.connect_timeout)
        except TimeoutError as err:
            self._ready.cancel()
            self._stop.set()
            await self._task
            raise TransportError("Timed out waiting for authentication") from err
        except HubwireError:
            await self._task
            raise

    def submit(self, operation: RequestOperation) -> Reply:
        """Queue a request for the actor.

        Returns:
            Future resolved with the result payload

        Raises:
            ClientClosedError: If the actor has terminated
        """
        if self._closed.is_set():
            raise ClientClosedError("Connection is closed")
        reply: Reply = asyncio.get_running_loop().create_future()
        self._inbox.put_nowait((operation, reply))
        return reply

    async def stop(self) -> None:
        """Close the connection and wait for the actor to finish."""
        self._stop.set()
        if self._task is not None:
            await self._task

    async def wait_closed(self) -> None:
        await self._closed.wait()

    # Actor main loop

    async def _run(self, ws: ClientConnection) -> None:
        try:
            while True:
                try:
                    await self._serve(ws)
                except AuthenticationError as err:
                    log.error("Authentication rejected", reason=str(err))
                    self._fail_ready(err)
                    return
                finally:
                    await ws.close()

                if self._stop.is_set():
                    return

                self._fail_pending(ConnectionLostError("Connection lost"))
                if self._ready is not None and not self._ready.done():
                    self._fail_ready(ConnectionLostError("Connection lost during handshake"))
                    return
                if not self._options.reconnect.enabled:
                    log.warning("Connection lost, reconnection disabled")
                    return

                next_ws = await self._reconnect()
                if next_ws is None:
                    return
                ws = next_ws
        except (OSError, WebSocketException) as e:
            log.error("Connection actor failed", error=str(e))
            self._fail_ready(ConnectionLostError(str(e)))
        finally:
            self._shutdown()

    async def _serve(self, ws: ClientConnection) -> None:
        """Run one connection until it drops or a stop is requested."""
        loop = asyncio.get_running_loop()
        self._state = ConnectionState.AWAITING_AUTH
        self._counter = 0
        self._unanswered_since = None
        self._next_ping = loop.time() + self._options.ping_interval

        recv_task: asyncio.Future[str | bytes] = asyncio.ensure_future(ws.recv())
        stop_task = asyncio.ensure_future(self._stop.wait())
        inbox_task: asyncio.Future[InboxItem] | None = None

        try:
            while True:
                waiters: set[asyncio.Future[object]] = {recv_task, stop_task}
                if self._state is ConnectionState.READY:
                    while self._held:
                        await self._send_request(ws, *self._held.popleft())
                    if inbox_task is None:
                        inbox_task = asyncio.ensure_future(self._inbox.get())
                    waiters.add(inbox_task)

                timeout = max(self._next_ping - loop.time(), 0.0)
                done, _ = await asyncio.wait(
                    waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
                )

                if stop_task in done:
                    return

                if recv_task in done:
                    try:
                        message = recv_task.result()
                    except ConnectionClosed as e:
                        log.info("Connection closed", code=e.rcvd.code if e.rcvd else None)
                        return
                    recv_task = asyncio.ensure_future(ws.recv())
                    await self._handle_message(ws, message)

                if inbox_task is not None and inbox_task in done:
                    operation, reply = inbox_task.result()
                    inbox_task = None
                    await self._send_request(ws, operation, reply)

                if loop.time() >= self._next_ping:
                    if not await self._keepalive(ws):
                        return
        except ConnectionClosed as e:
            log.info("Connection closed while sending", code=e.rcvd.code if e.rcvd else None)
        finally:
            if recv_task.done() and not recv_task.cancelled():
                recv_task.exception()
            recv_task.cancel()
            stop_task.cancel()
            if inbox_task is not None:
                if inbox_task.done() and not inbox_task.cancelled():
                    self._held.append(inbox_task.result())
                else:
                    inbox_task.cancel()

    async def _reconnect(self) -> ClientConnection | None:
        """Reopen the transport with exponential backoff.

        Returns:
            New connection, or ``None`` if stopped or attempts are exhausted
        """
        self._state = ConnectionState.RECONNECTING
        policy = self._options.reconnect
        url = self._config.websocket_url

        while True:
            self._attempt += 1
            if policy.max_attempts is not None and self._attempt > policy.max_attempts:
                log.error("Reconnection attempts exhausted", attempts=policy.max_attempts)
                return None

            delay = policy.delay_for(self._attempt)
            log.info("Reconnecting", attempt=self._attempt, delay=delay)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
                return None
            except TimeoutError:
                pass

            try:
                ws = await open_transport(url, timeout=self._options.connect_timeout)
            except TransportError as e:
                log.warning("Reconnection failed", attempt=self._attempt, error=str(e))
                continue

            self.stats.reconnects += 1
            return ws

    # Frame dispatch

    async def _handle_message(self, ws: ClientConnection, message: str | bytes) -> None:
        self.stats.frames_received += 1
        if isinstance(message, bytes):
            self.stats.malformed_frames += 1
            log.warning("Unexpected binary frame", size=len(message))
            return

        try:
            response = ResponseEnvelope.from_json(message)
        except ProtocolError as e:
            self.stats.malformed_frames += 1
            log.warning("Dropping malformed frame", error=str(e))
            return

        match response.type:
            case ResponseType.AUTH_REQUIRED:
                log.debug("Authentication required", ha_version=response.ha_version)
                await self._write(ws, RequestEnvelope(None, Authenticate(self._config.token)))
            case ResponseType.AUTH_OK:
                self._on_authenticated(response)
                await self._subscribe_events(ws)
            case ResponseType.AUTH_INVALID:
                raise AuthenticationError(response.message or "Invalid access token")
            case ResponseType.RESULT:
                self._resolve(response)
            case ResponseType.EVENT:
                self._dispatch_event(response)

    def _on_authenticated(self, response: ResponseEnvelope) -> None:
        self._state = ConnectionState.READY
        self._attempt = 0
        log.info("Authenticated", ha_version=response.ha_version)
        if self._ready is not None and not self._ready.done():
            self._ready.set_result(None)

    async def _subscribe_events(self, ws: ClientConnection) -> None:
        event_type = self._options.event_type
        reply: Reply = asyncio.get_running_loop().create_future()
        reply.add_done_callback(functools.partial(self._on_subscribed, event_type))
        await self._send_request(ws, SubscribeEvents(event_type=event_type), reply)

    @staticmethod
    def _on_subscribed(event_type: str | None, reply: Reply) -> None:
        if reply.cancelled():
            return
        error = reply.exception()
        if error is None:
            log.info("Subscribed to events", event_type=event_type)
        elif isinstance(error, RequestError):
            log.error("Event subscription rejected", event_type=event_type, error=str(error))

    async def _send_request(
        self, ws: ClientConnection, operation: RequestOperation, reply: Reply
    ) -> None:
        if reply.done():
            log.debug("Skipping abandoned request", type=operation.type.value)
            return
        envelope = RequestEnvelope(self._counter + 1, operation)
        try:
            text = envelope.to_json()
        except (TypeError, ValueError, RecursionError) as e:
            # Only this caller fails; the id is not consumed.
            log.warning("Request could not be encoded", type=operation.type.value, error=str(e))
            _fail(reply, e)
            return
        self._counter += 1
        self._pending[self._counter] = reply
        await self._write(ws, envelope, text)

    async def _write(
        self, ws: ClientConnection, envelope: RequestEnvelope, text: str | None = None
    ) -> None:
        await ws.send(envelope.to_json() if text is None else text)
        log.debug("Sent request", id=envelope.id, type=envelope.operation.type.value)

    def _resolve(self, response: ResponseEnvelope) -> None:
        reply = self._pending.pop(response.id, None) if response.id is not None else None
        if reply is None:
            self.stats.unknown_ids += 1
            log.warning("Result for unknown request id", id=response.id)
            return
        if reply.done():
            self.stats.abandoned_replies += 1
            log.debug("Reply abandoned by caller", id=response.id)
            return

        if response.success:
            reply.set_result(response.result)
        else:
            error = response.error or {}
            reply.set_exception(
                RequestError(
                    str(error.get("code", "unknown_error")),
                    str(error.get("message", "")),
                )
            )

    def _dispatch_event(self, response: ResponseEnvelope) -> None:
        if response.event is None:
            self.stats.unhandled_events += 1
            log.debug("Ignoring event", event_type=response.event_type)
            return
        self._bus.publish(response.event)
        self.stats.events_published += 1

    # Keep-alive

    async def _keepalive(self, ws: ClientConnection) -> bool:
        """Send a ping; return False if the previous one went unanswered too long."""
        loop = asyncio.get_running_loop()
        now = loop.time()
        self._next_ping = now + self._options.ping_interval

        if self._unanswered_since is not None:
            if now - self._unanswered_since > self._options.pong_timeout:
                log.warning("Keep-alive timed out", timeout=self._options.pong_timeout)
                return False
        else:
            self._unanswered_since = now

        sent_ns = time.time_ns()
        pong_waiter = await ws.ping(encode_ping_payload(sent_ns))
        pong_waiter.add_done_callback(functools.partial(self._on_pong, sent_ns))
        return True

    def _on_pong(self, sent_ns: int, pong_waiter: asyncio.Future[float]) -> None:
        if pong_waiter.cancelled() or pong_waiter.exception() is not None:
            return
        rtt = (time.time_ns() - sent_ns) / 1e9
        self.stats.last_rtt = rtt
        self._unanswered_since = None
        log.debug("Keep-alive", rtt_ms=round(rtt * 1000, 3))

    # Teardown

    def _fail_ready(self, exc: BaseException) -> None:
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(exc)

    def _fail_pending(self, exc: BaseException) -> None:
        pending, self._pending = self._pending, {}
        for reply in pending.values():
            _fail(reply, exc)
        if pending:
            log.warning("Failed in-flight requests", count=len(pending), reason=str(exc))

    def _shutdown(self) -> None:
        self._state = ConnectionState.CLOSED
        closed = ClientClosedError("Connection is closed")
        self._fail_pending(closed)
        while self._held:
            _fail(self._held.popleft()[1], closed)
        while not self._inbox.empty():
            _fail(self._inbox.get_nowait()[1], closed)
        self._fail_ready(closed)
        self._bus.close()
        self._closed.set()
        log.info("Connection actor stopped")
