"""Wire protocol for the Home Assistant WebSocket API.

This package defines the request/response envelopes, service actions and
typed result payload models.
"""

from hubwire.protocol.messages import (
    Authenticate,
    CallService,
    Event,
    EventType,
    Frame,
    GetStates,
    ListAreas,
    ListDevices,
    ListEntities,
    RawPayload,
    RequestEnvelope,
    RequestOperation,
    RequestType,
    ResponseEnvelope,
    ResponseType,
    StateChanged,
    SubscribeEvents,
    decode_event,
    make_auth_invalid,
    make_auth_ok,
    make_auth_required,
    make_event,
    make_result,
)
from hubwire.protocol.services import (
    GenericService,
    LightToggle,
    LightTurnOff,
    LightTurnOn,
    MediaNextTrack,
    MediaPause,
    MediaPlay,
    MediaPlayPause,
    MediaPreviousTrack,
    MediaRepeatSet,
    MediaSeek,
    MediaSelectSource,
    MediaShuffleSet,
    MediaStop,
    MediaVolumeMute,
    MediaVolumeSet,
    RepeatMode,
    ServiceAction,
)

__all__ = [
    # Requests
    "RequestType",
    "RequestOperation",
    "RequestEnvelope",
    "Authenticate",
    "GetStates",
    "ListAreas",
    "ListEntities",
    "ListDevices",
    "SubscribeEvents",
    "CallService",
    # Responses
    "ResponseType",
    "ResponseEnvelope",
    "Frame",
    "RawPayload",
    # Events
    "EventType",
    "Event",
    "StateChanged",
    "decode_event",
    # Hub-side frames
    "make_auth_required",
    "make_auth_ok",
    "make_auth_invalid",
    "make_result",
    "make_event",
    # Services
    "ServiceAction",
    "GenericService",
    "RepeatMode",
    "LightTurnOn",
    "LightTurnOff",
    "LightToggle",
    "MediaVolumeSet",
    "MediaVolumeMute",
    "MediaSeek",
    "MediaPlay",
    "MediaPause",
    "MediaPlayPause",
    "MediaStop",
    "MediaNextTrack",
    "MediaPreviousTrack",
    "MediaShuffleSet",
    "MediaRepeatSet",
    "MediaSelectSource",
]
