"""Exception hierarchy for the hubwire client.

Connection-level failures are raised to the caller of ``connect()`` or
``request()``. Frame-level problems (``ProtocolError``) never leave the
connection actor; they are logged and counted there.
"""

from __future__ import annotations


class HubwireError(Exception):
    """Base error for all hubwire failures."""


class TransportError(HubwireError):
    """The WebSocket transport could not be opened."""


class AuthenticationError(HubwireError):
    """The hub rejected the access token (``auth_invalid``)."""


class ConnectionLostError(HubwireError):
    """The connection dropped before a reply arrived."""


class ClientClosedError(ConnectionLostError):
    """The client was closed, or the connection actor has terminated."""


class RequestError(HubwireError):
    """The hub answered a request with ``success: false``."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class ProtocolError(HubwireError):
    """An inbound frame was malformed or of an unknown type."""


class EventsLagged(HubwireError):
    """A bus receiver fell behind and missed ``skipped`` events."""

    def __init__(self, skipped: int) -> None:
        super().__init__(f"Receiver lagged behind by {skipped} events")
        self.skipped = skipped


class EventBusClosed(HubwireError):
    """The event bus was closed and the receiver has been drained."""
