"""Tests for the JSON wire protocol."""

import json

import pytest

from drone_controller.link.models import ControlCommand, FlightMode, PIDGains
from drone_controller.link.protocol import (
    PidMessage,
    TelemetryMessage,
    decode_frame,
    decode_inbound,
    encode_control,
    encode_pid,
    encode_signal,
    encode_telemetry,
)
from drone_controller.telemetry.models import TelemetrySample


class TestEncode:
    def test_control_frame_has_only_axes(self):
        payload = encode_control(ControlCommand(throttle=60, yaw=-5, pitch=10, roll=3, flight_mode=FlightMode.SPORT))
        assert json.loads(payload) == {"throttle": 60, "yaw": -5, "pitch": 10, "roll": 3}

    def test_pid_frame(self):
        payload = encode_pid(PIDGains(p=1.5, i=0.2, d=0.05))
        assert json.loads(payload) == {"type": "pid", "p": 1.5, "i": 0.2, "d": 0.05}

    @pytest.mark.parametrize("signal_type", ["ping", "pid_query", "emergency_stop", "emergency_reset"])
    def test_signal_frames(self, signal_type):
        assert json.loads(encode_signal(signal_type)) == {"type": signal_type}

    def test_telemetry_frame(self):
        payload = encode_telemetry(TelemetrySample(altitude=3.0), sequence=7)
        document = json.loads(payload)
        assert document["type"] == "telemetry"
        assert document["sequence"] == 7
        assert document["altitude"] == 3.0


class TestDecodeFrame:
    def test_rejects_non_json(self):
        with pytest.raises(ValueError, match="JSON"):
            decode_frame(b"not json")

    def test_rejects_non_utf8(self):
        with pytest.raises(ValueError):
            decode_frame(b"\xff\xfe")

    def test_rejects_non_object(self):
        with pytest.raises(ValueError, match="object"):
            decode_frame(b"[1, 2]")


class TestDecodeInbound:
    def test_telemetry(self):
        message = decode_inbound(encode_telemetry(TelemetrySample(speed=2.5), sequence=3))
        assert isinstance(message, TelemetryMessage)
        assert message.sequence == 3
        assert message.to_sample() == TelemetrySample(speed=2.5)

    def test_pid_report(self):
        message = decode_inbound(b'{"type": "pid", "p": 2, "i": 0, "d": 0.1}')
        assert isinstance(message, PidMessage)
        assert message.d == 0.1

    def test_unknown_type_ignored(self):
        assert decode_inbound(b'{"type": "status"}') is None

    def test_invalid_telemetry_raises(self):
        with pytest.raises(ValueError, match="telemetry"):
            decode_inbound(b'{"type": "telemetry", "sequence": 1, "satellites": 6, "gps_fix": false}')

    def test_missing_sequence_raises(self):
        with pytest.raises(ValueError):
            decode_inbound(b'{"type": "telemetry", "altitude": 1}')
