"""Core infrastructure: configuration and the event bus."""

from hubwire.core.bus import EventBus, EventReceiver
from hubwire.core.config import (
    ConnectionConfig,
    HomeAssistantConfig,
    HubwireConfig,
    ReconnectConfig,
)

__all__ = [
    "EventBus",
    "EventReceiver",
    "ConnectionConfig",
    "HomeAssistantConfig",
    "HubwireConfig",
    "ReconnectConfig",
]
