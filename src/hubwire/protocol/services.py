"""Service actions carried by ``call_service`` requests.

Each action knows its Home Assistant ``domain`` and ``service`` name and
renders the ``service_data`` object sent on the wire. Actions are frozen
dataclasses; optional fields left as ``None`` are omitted from the payload.

Example:
    CallService("light.kitchen", LightTurnOn(brightness=128, transition=0.5))
    CallService("media_player.lounge", MediaVolumeSet(volume_level=0.4))
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar


class RepeatMode(str, Enum):
    """Media player repeat modes."""

    OFF = "off"
    ALL = "all"
    ONE = "one"


@dataclass(frozen=True, slots=True)
class ServiceAction:
    """Base class for typed service actions."""

    domain: ClassVar[str] = ""
    service: ClassVar[str] = ""

    def service_data(self) -> dict[str, Any]:
        """Render the non-empty fields as a ``service_data`` object."""
        data: dict[str, Any] = {}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, tuple):
                value = list(value)
            elif isinstance(value, Enum):
                value = value.value
            data[f.name] = value
        return data

    @classmethod
    def from_service_data(cls, data: Mapping[str, Any]) -> ServiceAction:
        """Rebuild an action from a decoded ``service_data`` object.

        Raises:
            ValueError: If the data contains fields the action does not have
        """
        names = {f.name for f in dataclasses.fields(cls)}
        unknown = set(data) - names
        if unknown:
            raise ValueError(f"Unknown fields for {cls.domain}.{cls.service}: {sorted(unknown)}")
        kwargs = {k: tuple(v) if isinstance(v, list) else v for k, v in data.items()}
        return cls(**kwargs)


def _check_range(name: str, value: float | None, low: float, high: float) -> None:
    if value is not None and not low <= value <= high:
        raise ValueError(f"{name} must be between {low} and {high}, got {value}")


# Light


@dataclass(frozen=True, slots=True)
class LightTurnOn(ServiceAction):
    """Turn a light on, optionally setting colour and brightness."""

    domain: ClassVar[str] = "light"
    service: ClassVar[str] = "turn_on"

    brightness: int | None = None
    brightness_pct: int | None = None
    color_temp_kelvin: int | None = None
    xy_color: tuple[float, float] | None = None
    hs_color: tuple[float, float] | None = None
    rgb_color: tuple[int, int, int] | None = None
    transition: float | None = None

    def __post_init__(self) -> None:
        _check_range("brightness", self.brightness, 0, 255)
        _check_range("brightness_pct", self.brightness_pct, 0, 100)
        colours = [c for c in (self.xy_color, self.hs_color, self.rgb_color) if c is not None]
        if len(colours) > 1:
            raise ValueError("Only one of xy_color, hs_color, rgb_color may be set")


@dataclass(frozen=True, slots=True)
class LightTurnOff(ServiceAction):
    """Turn a light off."""

    domain: ClassVar[str] = "light"
    service: ClassVar[str] = "turn_off"

    transition: float | None = None


@dataclass(frozen=True, slots=True)
class LightToggle(ServiceAction):
    """Toggle a light."""

    domain: ClassVar[str] = "light"
    service: ClassVar[str] = "toggle"


# Media player


@dataclass(frozen=True, slots=True)
class MediaVolumeSet(ServiceAction):
    """Set absolute volume (0.0 - 1.0)."""

    domain: ClassVar[str] = "media_player"
    service: ClassVar[str] = "volume_set"

    volume_level: float = 0.0

    def __post_init__(self) -> None:
        _check_range("volume_level", self.volume_level, 0.0, 1.0)


@dataclass(frozen=True, slots=True)
class MediaVolumeMute(ServiceAction):
    domain: ClassVar[str] = "media_player"
    service: ClassVar[str] = "volume_mute"

    is_volume_muted: bool = True


@dataclass(frozen=True, slots=True)
class MediaSeek(ServiceAction):
    """Seek to a position in seconds."""

    domain: ClassVar[str] = "media_player"
    service: ClassVar[str] = "media_seek"

    seek_position: float = 0.0

    def __post_init__(self) -> None:
        if self.seek_position < 0:
            raise ValueError("seek_position must not be negative")


@dataclass(frozen=True, slots=True)
class MediaPlay(ServiceAction):
    domain: ClassVar[str] = "media_player"
    service: ClassVar[str] = "media_play"


@dataclass(frozen=True, slots=True)
class MediaPause(ServiceAction):
    domain: ClassVar[str] = "media_player"
    service: ClassVar[str] = "media_pause"


@dataclass(frozen=True, slots=True)
class MediaPlayPause(ServiceAction):
    domain: ClassVar[str] = "media_player"
    service: ClassVar[str] = "media_play_pause"


@dataclass(frozen=True, slots=True)
class MediaStop(ServiceAction):
    domain: ClassVar[str] = "media_player"
    service: ClassVar[str] = "media_stop"


@dataclass(frozen=True, slots=True)
class MediaNextTrack(ServiceAction):
    domain: ClassVar[str] = "media_player"
    service: ClassVar[str] = "media_next_track"


@dataclass(frozen=True, slots=True)
class MediaPreviousTrack(ServiceAction):
    domain: ClassVar[str] = "media_player"
    service: ClassVar[str] = "media_previous_track"


@dataclass(frozen=True, slots=True)
class MediaShuffleSet(ServiceAction):
    domain: ClassVar[str] = "media_player"
    service: ClassVar[str] = "shuffle_set"

    shuffle: bool = True


@dataclass(frozen=True, slots=True)
class MediaRepeatSet(ServiceAction):
    domain: ClassVar[str] = "media_player"
    service: ClassVar[str] = "repeat_set"

    repeat: RepeatMode = RepeatMode.OFF

    def __post_init__(self) -> None:
        # Accept plain strings as decoded off the wire
        object.__setattr__(self, "repeat", RepeatMode(self.repeat))


@dataclass(frozen=True, slots=True)
class MediaSelectSource(ServiceAction):
    domain: ClassVar[str] = "media_player"
    service: ClassVar[str] = "select_source"

    source: str = ""


@dataclass(frozen=True, slots=True)
class GenericService(ServiceAction):
    """Escape hatch for services without a typed action.

    The instance carries its own domain and service names.
    """

    service_domain: str = ""
    service_name: str = ""
    data: Mapping[str, Any] = field(default_factory=dict)

    def service_data(self) -> dict[str, Any]:
        return dict(self.data)

    @property
    def qualified_name(self) -> str:
        return f"{self.service_domain}.{self.service_name}"


_ACTIONS: dict[tuple[str, str], type[ServiceAction]] = {
    (cls.domain, cls.service): cls
    for cls in (
        LightTurnOn,
        LightTurnOff,
        LightToggle,
        MediaVolumeSet,
        MediaVolumeMute,
        MediaSeek,
        MediaPlay,
        MediaPause,
        MediaPlayPause,
        MediaStop,
        MediaNextTrack,
        MediaPreviousTrack,
        MediaShuffleSet,
        MediaRepeatSet,
        MediaSelectSource,
    )
}


def action_names(action: ServiceAction) -> tuple[str, str]:
    """Return the ``(domain, service)`` pair an action is sent as."""
    if isinstance(action, GenericService):
        return action.service_domain, action.service_name
    return action.domain, action.service


def action_from_wire(domain: str, service: str, data: Mapping[str, Any]) -> ServiceAction:
    """Look up the typed action for ``domain.service``.

    Unknown services fall back to ``GenericService``.
    """
    cls = _ACTIONS.get((domain, service))
    if cls is None:
        return GenericService(service_domain=domain, service_name=service, data=dict(data))
    return cls.from_service_data(data)
