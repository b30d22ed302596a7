"""Typed models for result payloads.

Result payloads reach callers as plain decoded JSON. These pydantic models
are opt-in: pass one as ``model=`` to ``Client.request`` (or use the
``Client`` helpers) to validate the payload on demand.

Unknown fields are kept (``extra="allow"``) since hub releases add
attributes freely.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

log = structlog.get_logger()


class _Payload(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)


# Registries


class Area(_Payload):
    """Entry of ``config/area_registry/list``."""

    area_id: str
    name: str
    aliases: list[str] = Field(default_factory=list)
    picture: str | None = None


class Device(_Payload):
    """Entry of ``config/device_registry/list``."""

    id: str
    name: str | None = None
    area_id: str | None = None
    configuration_url: str | None = None
    config_entries: list[str] = Field(default_factory=list)
    connections: list[tuple[str, str]] = Field(default_factory=list)
    disabled_by: str | None = None
    entry_type: str | None = None
    hw_version: str | None = None
    identifiers: list[tuple[str, str]] = Field(default_factory=list)
    manufacturer: str | None = None
    model: str | None = None
    name_by_user: str | None = None
    sw_version: str | None = None
    via_device_id: str | None = None


class Entity(_Payload):
    """Entry of ``config/entity_registry/list``."""

    entity_id: str
    id: str | None = None
    area_id: str | None = None
    config_entry_id: str | None = None
    device_id: str | None = None
    disabled_by: str | None = None
    entity_category: str | None = None
    has_entity_name: bool = False
    hidden_by: str | None = None
    icon: str | None = None
    name: str | None = None
    original_name: str | None = None
    platform: str | None = None
    translation_key: str | None = None
    unique_id: str | None = None


# States


class EntityState(_Payload):
    """Entry of ``get_states`` and the state objects of state_changed events."""

    entity_id: str
    state: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    last_changed: datetime | None = None
    last_updated: datetime | None = None

    @property
    def domain(self) -> str:
        return self.entity_id.split(".", 1)[0]


class ColorMode(str, Enum):
    ONOFF = "onoff"
    BRIGHTNESS = "brightness"
    COLOR_TEMP = "color_temp"
    HS = "hs"
    XY = "xy"
    RGB = "rgb"
    RGBW = "rgbw"
    RGBWW = "rgbww"
    WHITE = "white"
    UNKNOWN = "unknown"


class LightAttributes(_Payload):
    friendly_name: str | None = None
    supported_color_modes: list[ColorMode] = Field(default_factory=list)
    color_mode: ColorMode | None = None
    brightness: int | None = None
    color_temp_kelvin: int | None = None
    min_color_temp_kelvin: int | None = None
    max_color_temp_kelvin: int | None = None
    xy_color: tuple[float, float] | None = None
    hs_color: tuple[float, float] | None = None
    rgb_color: tuple[int, int, int] | None = None


class MediaPlayerAttributes(_Payload):
    friendly_name: str | None = None
    volume_level: float | None = None
    is_volume_muted: bool | None = None
    media_content_id: str | None = None
    media_content_type: str | None = None
    media_title: str | None = None
    media_artist: str | None = None
    media_album_name: str | None = None
    media_duration: float | None = None
    media_position: float | None = None
    entity_picture: str | None = None
    source: str | None = None
    source_list: list[str] = Field(default_factory=list)
    group_members: list[str] = Field(default_factory=list)
    shuffle: bool | None = None
    repeat: str | None = None
    queue_position: int | None = None
    queue_size: int | None = None


class WeatherForecast(_Payload):
    condition: str | None = None
    forecast_time: str | None = Field(default=None, alias="datetime")
    temperature: float | None = None
    temperature_low: float | None = Field(default=None, alias="templow")
    wind_bearing: float | None = None
    wind_speed: float | None = None
    precipitation: float | None = None
    humidity: float | None = None


class WeatherAttributes(_Payload):
    friendly_name: str | None = None
    temperature: float | None = None
    temperature_unit: str | None = None
    dew_point: float | None = None
    humidity: float | None = None
    cloud_coverage: float | None = None
    pressure: float | None = None
    pressure_unit: str | None = None
    wind_bearing: float | None = None
    wind_speed: float | None = None
    wind_speed_unit: str | None = None
    visibility_unit: str | None = None
    precipitation_unit: str | None = None
    forecast: list[WeatherForecast] = Field(default_factory=list)


class SunAttributes(_Payload):
    elevation: float | None = None
    azimuth: float | None = None
    rising: bool | None = None
    next_dawn: datetime | None = None
    next_dusk: datetime | None = None
    next_rising: datetime | None = None
    next_setting: datetime | None = None


class CameraAttributes(_Payload):
    friendly_name: str | None = None
    access_token: str | None = Field(default=None, repr=False)
    entity_picture: str | None = None


DOMAIN_ATTRIBUTES: dict[str, type[_Payload]] = {
    "light": LightAttributes,
    "media_player": MediaPlayerAttributes,
    "weather": WeatherAttributes,
    "sun": SunAttributes,
    "camera": CameraAttributes,
}


def parse_attributes(state: EntityState) -> _Payload | None:
    """Validate ``state.attributes`` with the model for its domain.

    Returns:
        Typed attributes, or ``None`` if the domain has no model
    """
    model = DOMAIN_ATTRIBUTES.get(state.domain)
    if model is None:
        log.debug("No attribute model for domain", domain=state.domain, entity=state.entity_id)
        return None
    return model.model_validate(state.attributes)


AreaList = list[Area]
DeviceList = list[Device]
EntityList = list[Entity]
StateList = list[EntityState]
