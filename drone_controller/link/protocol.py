"""JSON datagram wire format between controller and vehicle.

Outbound frames are control, pid, ping, pid_query, emergency_stop and
emergency_reset. Inbound frames are telemetry and pid reports. Control
frames carry no ``type`` field, matching what existing vehicle firmware
already parses.
"""

from __future__ import annotations

import json
import logging
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

from drone_controller.link.models import ControlCommand, PIDGains
from drone_controller.telemetry.models import TelemetrySample

logger = logging.getLogger(__name__)

_ENCODING = "utf-8"


class ControlMessage(BaseModel):
    """Stick frame: ``{throttle, yaw, pitch, roll}``."""

    throttle: int
    yaw: int
    pitch: int
    roll: int


class PidMessage(BaseModel):
    """Gain update (outbound) or applied-gain report (inbound)."""

    type: Literal["pid"] = "pid"
    p: float = Field(ge=0.0)
    i: float = Field(ge=0.0)
    d: float = Field(ge=0.0)


class SignalMessage(BaseModel):
    """Payload-free frame identified only by its type."""

    type: Literal["ping", "pid_query", "emergency_stop", "emergency_reset"]


class TelemetryMessage(TelemetrySample):
    """Telemetry frame: a sample plus the vehicle's sampling sequence number."""

    type: Literal["telemetry"] = "telemetry"
    sequence: int = Field(ge=0)

    def to_sample(self) -> TelemetrySample:
        """Strip the framing fields and return the bare sample."""
        return TelemetrySample.model_validate(self.model_dump(exclude={"type", "sequence"}))


InboundMessage = TelemetryMessage | PidMessage


def encode_control(command: ControlCommand) -> bytes:
    """Encode a stick command frame."""
    message = ControlMessage(
        throttle=command.throttle,
        yaw=command.yaw,
        pitch=command.pitch,
        roll=command.roll,
    )
    return message.model_dump_json().encode(_ENCODING)


def encode_pid(gains: PIDGains) -> bytes:
    """Encode a PID gain update frame."""
    return PidMessage(p=gains.p, i=gains.i, d=gains.d).model_dump_json().encode(_ENCODING)


def encode_signal(
    signal_type: Literal["ping", "pid_query", "emergency_stop", "emergency_reset"],
) -> bytes:
    """Encode a payload-free signal frame."""
    return SignalMessage(type=signal_type).model_dump_json().encode(_ENCODING)


def encode_telemetry(sample: TelemetrySample, *, sequence: int) -> bytes:
    """Encode a telemetry frame as the vehicle would send it."""
    message = TelemetryMessage(**sample.model_dump(), sequence=sequence)
    return message.model_dump_json().encode(_ENCODING)


def decode_frame(payload: bytes) -> dict[str, object]:
    """Parse any datagram into its JSON object.

    Raises:
        ValueError: If the payload is not a UTF-8 JSON object.
    """
    try:
        document = json.loads(payload.decode(_ENCODING))
    except (UnicodeDecodeError, json.JSONDecodeError) as error:
        raise ValueError(f"Frame is not valid JSON: {error}") from error
    if not isinstance(document, dict):
        raise ValueError(f"Frame must be a JSON object, got {type(document).__name__}")
    return document


def decode_inbound(payload: bytes) -> InboundMessage | None:
    """Decode a datagram received from the vehicle.

    Returns:
        The decoded message, or None for frames this controller ignores.

    Raises:
        ValueError: If the frame is malformed.
    """
    document = decode_frame(payload)
    frame_type = document.get("type")

    try:
        if frame_type == "telemetry":
            return TelemetryMessage.model_validate(document)
        if frame_type == "pid":
            return PidMessage.model_validate(document)
    except ValidationError as error:
        raise ValueError(f"Invalid {frame_type} frame: {error}") from error

    logger.debug("Ignoring inbound frame of type %s", frame_type)
    return None
