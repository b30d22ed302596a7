"""Configuration schema and loading for hubwire.

This module defines the Pydantic models for YAML configuration files.
Keys are written in kebab-case in YAML; the Python field names are
accepted as well.

Example::

    home-assistant:
      uri: homeassistant.local:8123
      token: <long-lived access token>
    connection:
      ping-interval: 10
      reconnect:
        max-attempts: 5
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _kebab(name: str) -> str:
    return name.replace("_", "-")


class _ConfigModel(BaseModel):
    model_config = ConfigDict(alias_generator=_kebab, populate_by_name=True)


class HomeAssistantConfig(_ConfigModel):
    """Endpoint and credentials of the hub."""

    uri: str
    """Host and optional port, e.g. ``homeassistant.local:8123``."""

    token: str = Field(repr=False)
    """Long-lived access token."""

    secure: bool = False
    """Use ``wss://`` instead of ``ws://``."""

    @field_validator("uri")
    @classmethod
    def _strip_scheme(cls, v: str) -> str:
        for scheme in ("ws://", "wss://", "http://", "https://"):
            if v.startswith(scheme):
                v = v[len(scheme) :]
                break
        v = v.rstrip("/")
        if not v:
            raise ValueError("uri must not be empty")
        return v

    @property
    def websocket_url(self) -> str:
        """Full WebSocket endpoint URL."""
        scheme = "wss" if self.secure else "ws"
        return f"{scheme}://{self.uri}/api/websocket"


class ReconnectConfig(_ConfigModel):
    """Reconnection policy after the connection drops."""

    enabled: bool = True
    """Whether to reconnect at all. Disabled = close on first loss."""

    initial_delay: float = 1.0
    """Delay before the first reconnection attempt, in seconds."""

    max_delay: float = 60.0
    """Upper bound for the backoff delay, in seconds."""

    multiplier: float = 2.0
    """Backoff growth factor between attempts."""

    max_attempts: int | None = None
    """Attempts per outage before giving up. None = retry forever."""

    @field_validator("initial_delay", "max_delay")
    @classmethod
    def _validate_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("delay must not be negative")
        return v

    @field_validator("multiplier")
    @classmethod
    def _validate_multiplier(cls, v: float) -> float:
        if v < 1:
            raise ValueError("multiplier must be at least 1")
        return v

    @field_validator("max_attempts")
    @classmethod
    def _validate_attempts(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError("max_attempts must be positive")
        return v

    @model_validator(mode="after")
    def _validate_bounds(self) -> ReconnectConfig:
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        return self

    def delay_for(self, attempt: int) -> float:
        """Backoff delay before attempt number ``attempt`` (1-based)."""
        delay = self.initial_delay * self.multiplier ** max(attempt - 1, 0)
        return min(delay, self.max_delay)


class ConnectionConfig(_ConfigModel):
    """Connection actor tuning."""

    ping_interval: float = 10.0
    """Seconds between keep-alive pings."""

    pong_timeout: float = 30.0
    """Seconds a ping may stay unanswered before the connection is dead."""

    connect_timeout: float = 10.0
    """Seconds allowed for opening the socket and the auth handshake."""

    event_buffer: int = 256
    """Events retained by the bus for slow subscribers."""

    event_type: str | None = "state_changed"
    """Event type subscribed after authentication. None = all events."""

    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    """Reconnection policy."""

    @field_validator("ping_interval", "pong_timeout", "connect_timeout")
    @classmethod
    def _validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("interval must be positive")
        return v

    @field_validator("event_buffer")
    @classmethod
    def _validate_buffer(cls, v: int) -> int:
        if v < 1:
            raise ValueError("event_buffer must be positive")
        return v


class HubwireConfig(_ConfigModel):
    """Root hubwire configuration."""

    home_assistant: HomeAssistantConfig
    """Hub endpoint and credentials."""

    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    """Connection settings."""

    @classmethod
    def from_yaml(cls, path: Path | str) -> HubwireConfig:
        """Load configuration from YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            Parsed configuration

        Raises:
            FileNotFoundError: If file doesn't exist
            pydantic.ValidationError: If configuration invalid
        """
        import yaml

        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f)

        return cls.model_validate(data or {})
