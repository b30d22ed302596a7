"""Wire codec for the Home Assistant WebSocket API.

This module defines the JSON message shapes exchanged with the hub.

Message Types:
    Client → Hub:
        - auth: access token, sent without an id
        - get_states, config/*_registry/list: one-shot queries
        - subscribe_events: start the state_changed feed
        - call_service: invoke a service on an entity

    Hub → Client:
        - auth_required / auth_ok / auth_invalid: handshake
        - result: reply to a numbered request
        - event: pushed event for a subscription

Each inbound frame is parsed exactly once. The raw text and the parsed
tree travel together as a ``Frame``; result payloads and event states are
handed on by reference and only validated into typed models on demand.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Any, ClassVar, TypeVar

from pydantic import TypeAdapter

from hubwire.errors import ProtocolError
from hubwire.protocol.services import ServiceAction, action_from_wire, action_names

T = TypeVar("T")


class RequestType(str, Enum):
    """Discriminants of outbound requests."""

    AUTH = "auth"
    GET_STATES = "get_states"
    LIST_AREAS = "config/area_registry/list"
    LIST_ENTITIES = "config/entity_registry/list"
    LIST_DEVICES = "config/device_registry/list"
    SUBSCRIBE_EVENTS = "subscribe_events"
    CALL_SERVICE = "call_service"


class ResponseType(str, Enum):
    """Discriminants of inbound frames."""

    AUTH_REQUIRED = "auth_required"
    AUTH_OK = "auth_ok"
    AUTH_INVALID = "auth_invalid"
    RESULT = "result"
    EVENT = "event"


class EventType(str, Enum):
    """Event types the client decodes."""

    STATE_CHANGED = "state_changed"


# Request operations


@dataclass(frozen=True, slots=True)
class Authenticate:
    """Handshake message answering ``auth_required``."""

    type: ClassVar[RequestType] = RequestType.AUTH

    access_token: str = field(repr=False)

    def to_fields(self) -> dict[str, Any]:
        return {"access_token": self.access_token}


@dataclass(frozen=True, slots=True)
class GetStates:
    type: ClassVar[RequestType] = RequestType.GET_STATES

    def to_fields(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True, slots=True)
class ListAreas:
    type: ClassVar[RequestType] = RequestType.LIST_AREAS

    def to_fields(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True, slots=True)
class ListEntities:
    type: ClassVar[RequestType] = RequestType.LIST_ENTITIES

    def to_fields(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True, slots=True)
class ListDevices:
    type: ClassVar[RequestType] = RequestType.LIST_DEVICES

    def to_fields(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True, slots=True)
class SubscribeEvents:
    """Subscribe to pushed events, optionally filtered by event type."""

    type: ClassVar[RequestType] = RequestType.SUBSCRIBE_EVENTS

    event_type: str | None = None

    def to_fields(self) -> dict[str, Any]:
        if self.event_type is None:
            return {}
        return {"event_type": self.event_type}


@dataclass(frozen=True, slots=True)
class CallService:
    """Invoke ``action`` on the entity ``target``.

    Attributes:
        target: Entity id (``domain.object_id``)
        action: Typed service action
    """

    type: ClassVar[RequestType] = RequestType.CALL_SERVICE

    target: str
    action: ServiceAction

    def __post_init__(self) -> None:
        if "." not in self.target:
            raise ValueError(f"Expected 'domain.object_id' entity id: {self.target}")

    def to_fields(self) -> dict[str, Any]:
        domain, service = action_names(self.action)
        fields: dict[str, Any] = {"domain": domain, "service": service}
        data = self.action.service_data()
        if data:
            fields["service_data"] = data
        fields["target"] = {"entity_id": self.target}
        return fields


RequestOperation = (
    Authenticate | GetStates | ListAreas | ListEntities | ListDevices | SubscribeEvents | CallService
)


def _operation_from_fields(kind: RequestType, data: Mapping[str, Any]) -> RequestOperation:
    match kind:
        case RequestType.AUTH:
            return Authenticate(access_token=str(data["access_token"]))
        case RequestType.GET_STATES:
            return GetStates()
        case RequestType.LIST_AREAS:
            return ListAreas()
        case RequestType.LIST_ENTITIES:
            return ListEntities()
        case RequestType.LIST_DEVICES:
            return ListDevices()
        case RequestType.SUBSCRIBE_EVENTS:
            return SubscribeEvents(event_type=data.get("event_type"))
        case RequestType.CALL_SERVICE:
            target = data.get("target") or {}
            action = action_from_wire(
                data["domain"], data["service"], data.get("service_data") or {}
            )
            return CallService(target=target["entity_id"], action=action)
    raise ValueError(f"Unhandled request type: {kind}")


@dataclass(frozen=True, slots=True)
class RequestEnvelope:
    """Outbound request: an optional id plus the operation.

    Attributes:
        id: Request number, ``None`` only for ``Authenticate``
        operation: The command being sent
    """

    id: int | None
    operation: RequestOperation

    def to_json(self) -> str:
        """Serialize to a text frame with the operation fields flattened."""
        data: dict[str, Any] = {}
        if self.id is not None:
            data["id"] = self.id
        data["type"] = self.operation.type.value
        data.update(self.operation.to_fields())
        return json.dumps(data)

    @classmethod
    def from_json(cls, text: str) -> RequestEnvelope:
        """Parse a request frame (used by hub doubles and diagnostics).

        Raises:
            ValueError: If the frame is not a valid request
        """
        try:
            data = json.loads(text)
            if not isinstance(data, dict):
                raise ValueError("Request must be a JSON object")
            kind = RequestType(data.get("type"))
            return cls(id=data.get("id"), operation=_operation_from_fields(kind, data))
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON: {e}") from e
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid request: {e}") from e


# Inbound frames


@lru_cache(maxsize=64)
def _adapter(model: Any) -> TypeAdapter[Any]:
    return TypeAdapter(model)


@dataclass(frozen=True, slots=True)
class Frame:
    """An inbound text frame together with its parsed JSON tree."""

    text: str
    data: Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class RawPayload:
    """A result payload, still backed by the frame it arrived in.

    ``value`` is a reference into ``frame.data``; nothing is copied.
    """

    frame: Frame
    value: Any

    def decode(self, model: type[T] | Any) -> T:
        """Validate the payload into ``model`` (any pydantic-supported type)."""
        return _adapter(model).validate_python(self.value)


@dataclass(frozen=True, slots=True)
class StateChanged:
    """An entity changed state.

    ``old_state`` is ``None`` for a newly added entity and ``new_state`` is
    ``None`` for a removed one. Both are read-only views over the decoded
    frame, shared by every subscriber.
    """

    event_type: ClassVar[EventType] = EventType.STATE_CHANGED

    entity_id: str
    old_state: Mapping[str, Any] | None
    new_state: Mapping[str, Any] | None
    time_fired: str | None = None

    @property
    def domain(self) -> str:
        """Entity domain, e.g. ``light`` for ``light.kitchen``."""
        return self.entity_id.split(".", 1)[0]

    def to_payload(self) -> dict[str, Any]:
        """Render as the ``event`` object of an event frame."""
        payload: dict[str, Any] = {
            "event_type": self.event_type.value,
            "data": {
                "entity_id": self.entity_id,
                "old_state": None if self.old_state is None else dict(self.old_state),
                "new_state": None if self.new_state is None else dict(self.new_state),
            },
        }
        if self.time_fired is not None:
            payload["time_fired"] = self.time_fired
        return payload


Event = StateChanged


def _readonly(state: Any) -> Mapping[str, Any] | None:
    if state is None:
        return None
    if not isinstance(state, dict):
        raise ProtocolError("Entity state must be an object")
    return MappingProxyType(state)


def decode_event(payload: Any) -> Event | None:
    """Decode the ``event`` object of an event frame.

    Returns:
        The decoded event, or ``None`` for an event type this client does
        not handle

    Raises:
        ProtocolError: If the payload is malformed
    """
    if not isinstance(payload, dict):
        raise ProtocolError("Event frame missing 'event' object")

    event_type = payload.get("event_type")
    if event_type != EventType.STATE_CHANGED.value:
        return None

    data = payload.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("entity_id"), str):
        raise ProtocolError("state_changed event missing 'data.entity_id'")

    return StateChanged(
        entity_id=data["entity_id"],
        old_state=_readonly(data.get("old_state")),
        new_state=_readonly(data.get("new_state")),
        time_fired=payload.get("time_fired"),
    )


@dataclass(frozen=True, slots=True)
class ResponseEnvelope:
    """A decoded inbound frame.

    Attributes:
        id: Request id for ``result`` and ``event`` frames
        type: Frame discriminant
        result: Result payload (``result`` frames only)
        event: Decoded event (``event`` frames with a known event type)
        event_type: Raw event type string (``event`` frames only)
        success: Whether the request succeeded (``result`` frames only)
        error: Error object of a failed request
        message: Hub message, e.g. the reason for ``auth_invalid``
        ha_version: Hub version announced during the handshake
    """

    id: int | None
    type: ResponseType
    result: RawPayload | None = None
    event: Event | None = None
    event_type: str | None = None
    success: bool | None = None
    error: Mapping[str, Any] | None = None
    message: str | None = None
    ha_version: str | None = None

    @classmethod
    def from_json(cls, text: str) -> ResponseEnvelope:
        """Parse an inbound text frame.

        Raises:
            ProtocolError: If the frame is malformed or of an unknown type
        """
        try:
            data = json.loads(text)
        except (ValueError, RecursionError) as e:
            raise ProtocolError(f"Invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ProtocolError("Frame must be a JSON object")

        try:
            kind = ResponseType(data.get("type"))
        except ValueError:
            raise ProtocolError(f"Unknown frame type: {data.get('type')!r}") from None

        msg_id = data.get("id")
        if msg_id is not None and (not isinstance(msg_id, int) or isinstance(msg_id, bool)):
            raise ProtocolError(f"Frame id must be an integer: {msg_id!r}")

        match kind:
            case ResponseType.RESULT:
                if msg_id is None:
                    raise ProtocolError("result frame without id")
                error = data.get("error")
                return cls(
                    id=msg_id,
                    type=kind,
                    result=RawPayload(Frame(text, data), data.get("result")),
                    success=bool(data.get("success", True)),
                    error=error if isinstance(error, dict) else None,
                )
            case ResponseType.EVENT:
                payload = data.get("event")
                event = decode_event(payload)
                return cls(
                    id=msg_id,
                    type=kind,
                    event=event,
                    event_type=payload.get("event_type"),
                )
            case _:
                return cls(
                    id=msg_id,
                    type=kind,
                    message=data.get("message"),
                    ha_version=data.get("ha_version"),
                )


# Factory functions for hub-side frames


def make_auth_required(ha_version: str = "2024.1.0") -> str:
    return json.dumps({"type": ResponseType.AUTH_REQUIRED.value, "ha_version": ha_version})


def make_auth_ok(ha_version: str = "2024.1.0") -> str:
    return json.dumps({"type": ResponseType.AUTH_OK.value, "ha_version": ha_version})


def make_auth_invalid(message: str = "Invalid access token") -> str:
    return json.dumps({"type": ResponseType.AUTH_INVALID.value, "message": message})


def make_result(
    msg_id: int,
    result: Any = None,
    *,
    success: bool = True,
    error: Mapping[str, Any] | None = None,
) -> str:
    """Create a result frame.

    Args:
        msg_id: Id of the request being answered
        result: Result payload
        success: Whether the request succeeded
        error: Error object (``code``/``message``) for failed requests

    Returns:
        JSON text frame
    """
    frame: dict[str, Any] = {
        "id": msg_id,
        "type": ResponseType.RESULT.value,
        "success": success,
        "result": result,
    }
    if error is not None:
        frame["error"] = dict(error)
    return json.dumps(frame)


def make_event(subscription_id: int, event: Event) -> str:
    """Create an event frame for the subscription ``subscription_id``."""
    return json.dumps(
        {"id": subscription_id, "type": ResponseType.EVENT.value, "event": event.to_payload()}
    )
