"""Vehicle link data models."""

import re
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

_AXIS_MINIMUM: int = -100
_AXIS_MAXIMUM: int = 100

_IPV4_PATTERN = re.compile(
    r"^((25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}(25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)$"
)


def validate_ipv4_host(value: str) -> str:
    """Return ``value`` if it is a dotted-quad IPv4 address, else raise ValueError."""
    if not _IPV4_PATTERN.match(value):
        error_message = f"host must be a dotted-quad IPv4 address, got '{value}'"
        raise ValueError(error_message)
    return value


class LinkState(StrEnum):
    """Link session connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class FlightMode(StrEnum):
    """Pilot-selected flight mode."""

    NORMAL = "normal"
    SPORT = "sport"
    BEGINNER = "beginner"


class ConnectionConfig(BaseModel):
    """Vehicle endpoint: dotted-quad IPv4 host and UDP port."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    host: str
    port: int = Field(ge=0, le=65535)

    @field_validator("host")
    @classmethod
    def validate_host(cls, value: str) -> str:
        """Validate host is a dotted-quad IPv4 address."""
        return validate_ipv4_host(value)

    @property
    def endpoint(self) -> tuple[str, int]:
        """Return the (host, port) tuple used by socket APIs."""
        return (self.host, self.port)


class ControlCommand(BaseModel):
    """Full 4-axis stick command sent toward the vehicle."""

    model_config = ConfigDict(frozen=True)

    throttle: int = Field(default=0, ge=_AXIS_MINIMUM, le=_AXIS_MAXIMUM)
    yaw: int = Field(default=0, ge=_AXIS_MINIMUM, le=_AXIS_MAXIMUM)
    pitch: int = Field(default=0, ge=_AXIS_MINIMUM, le=_AXIS_MAXIMUM)
    roll: int = Field(default=0, ge=_AXIS_MINIMUM, le=_AXIS_MAXIMUM)
    flight_mode: FlightMode | None = Field(default=None)


class PIDGains(BaseModel):
    """Proportional, integral and derivative gains."""

    model_config = ConfigDict(frozen=True)

    p: float = Field(default=1.0, ge=0.0)
    i: float = Field(default=0.0, ge=0.0)
    d: float = Field(default=0.0, ge=0.0)
