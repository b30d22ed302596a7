"""Client side of the hub connection.

This package provides the connection actor that owns the socket and the
public ``Client`` handle used by application code.
"""

from hubwire.client.connection import (
    ConnectionActor,
    ConnectionState,
    ConnectionStats,
    decode_ping_payload,
    encode_ping_payload,
    open_transport,
)
from hubwire.client.handle import Client, EventStream, connect

__all__ = [
    # Connection
    "ConnectionActor",
    "ConnectionState",
    "ConnectionStats",
    "decode_ping_payload",
    "encode_ping_payload",
    "open_transport",
    # Handle
    "Client",
    "EventStream",
    "connect",
]
