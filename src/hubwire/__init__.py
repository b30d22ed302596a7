"""hubwire - multiplexed client for the Home Assistant WebSocket API.

One actor task owns the authenticated socket. Any number of callers send
requests through a shared ``Client`` and any number of listeners receive
pushed state changes from a fan-out event bus.
"""

__version__ = "0.1.0"

# Client
from hubwire.client import Client, ConnectionState, ConnectionStats, EventStream, connect

# Event bus
from hubwire.core.bus import EventBus, EventReceiver

# Configuration
from hubwire.core.config import ConnectionConfig, HomeAssistantConfig, HubwireConfig, ReconnectConfig

# Errors
from hubwire.errors import (
    AuthenticationError,
    ClientClosedError,
    ConnectionLostError,
    EventBusClosed,
    EventsLagged,
    HubwireError,
    ProtocolError,
    RequestError,
    TransportError,
)

# Protocol
from hubwire.protocol.messages import (
    CallService,
    Event,
    GetStates,
    ListAreas,
    ListDevices,
    ListEntities,
    StateChanged,
    SubscribeEvents,
)

__all__ = [
    # Version
    "__version__",
    # Client
    "connect",
    "Client",
    "EventStream",
    "ConnectionState",
    "ConnectionStats",
    # Configuration
    "HubwireConfig",
    "HomeAssistantConfig",
    "ConnectionConfig",
    "ReconnectConfig",
    # Bus
    "EventBus",
    "EventReceiver",
    # Protocol
    "GetStates",
    "ListAreas",
    "ListEntities",
    "ListDevices",
    "SubscribeEvents",
    "CallService",
    "Event",
    "StateChanged",
    # Errors
    "HubwireError",
    "TransportError",
    "AuthenticationError",
    "ConnectionLostError",
    "ClientClosedError",
    "RequestError",
    "ProtocolError",
    "EventsLagged",
    "EventBusClosed",
]
