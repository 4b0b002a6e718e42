"""Tests for the link session state machine."""

from unittest.mock import MagicMock

import pytest

from drone_controller.config import ControllerSettings
from drone_controller.events import EventBus, EventType
from drone_controller.exceptions import ConfigurationError, LinkConnectionError, TransientSendFailure
from drone_controller.link.models import ConnectionConfig, ControlCommand, LinkState, PIDGains
from drone_controller.link.protocol import encode_telemetry
from drone_controller.link.session import LinkSession
from drone_controller.link.transport import SimulatedTransport
from drone_controller.logging.context import clear_context, get_extra_context, get_session_id
from drone_controller.storage.settings import SettingsStore
from drone_controller.storage.store import InMemoryKeyValueStore
from drone_controller.telemetry.models import MINIMUM_SATELLITES_FOR_FIX, TelemetrySample
from drone_controller.telemetry.simulator import TelemetrySimulator


class _FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now


class _Recorder:
    """Collects bus events as (type, data) pairs."""

    def __init__(self, bus):
        self.events = []
        for event_type in EventType:
            bus.subscribe(event_type, lambda data, event_type=event_type: self.events.append((event_type, data)))

    def of(self, event_type):
        return [data for recorded_type, data in self.events if recorded_type == event_type]


def _make_settings(**overrides):
    return ControllerSettings(**overrides)


def _make_session(transport=None, clock=None, **overrides):
    """Create a session over a seeded simulated vehicle (or the given transport)."""
    settings = _make_settings(**overrides)
    clock = clock or _FakeClock()
    if transport is None:
        transport = SimulatedTransport(
            TelemetrySimulator(seed=7),
            clock=clock,
            emergency_cooldown_seconds=settings.emergency_cooldown_seconds,
        )
    bus = EventBus()
    events = _Recorder(bus)
    settings_store = SettingsStore(InMemoryKeyValueStore())
    session = LinkSession(transport, settings_store, settings, event_bus=bus, clock=clock)
    return session, transport, clock, events


def _make_mock_transport(frames=None):
    transport = MagicMock()
    transport.query_pid_gains.return_value = None
    transport.receive.return_value = frames or []
    transport.is_open.return_value = True
    return transport


def _advance(session, clock, seconds, step=0.5):
    """Advance the clock in ``step`` increments, ticking the session each time."""
    ticks = round(seconds / step)
    for _ in range(ticks):
        clock.now += step
        session.tick()


class TestConnect:
    def setup_method(self):
        clear_context()

    def test_connects_to_persisted_endpoint(self):
        session, _, _, _ = _make_session()

        assert session.connect() is True

        assert session.is_connected() is True
        assert session.state == LinkState.CONNECTED
        assert session.connection_config == ConnectionConfig(host="192.168.4.1", port=8888)

    def test_emits_connecting_then_connected(self):
        session, _, _, events = _make_session()
        session.connect()

        states = [event["state"] for event in events.of(EventType.CONNECTION_CHANGED)]
        assert states == [LinkState.CONNECTING, LinkState.CONNECTED]

    def test_sends_ping_probe(self):
        session, transport, _, _ = _make_session()
        session.connect()
        assert transport.pings_received == 1

    def test_sets_session_id(self):
        session, _, _, _ = _make_session()
        session.connect()
        assert get_session_id() != ""

    def test_binds_vehicle_endpoint_to_log_context(self):
        session, _, _, _ = _make_session()
        session.connect()
        assert get_extra_context() == {"vehicle": "192.168.4.1:8888"}

    def test_connect_to_raw_input(self):
        session, _, _, _ = _make_session()
        assert session.connect_to("192.168.4.1", "8888") is True
        assert session.connection_config.port == 8888

    @pytest.mark.parametrize(("host", "port"), [("192.168.4", "8888"), ("192.168.4.1", "99999"), ("x", "y")])
    def test_invalid_config_never_reaches_transport(self, host, port):
        transport = _make_mock_transport()
        session, _, _, _ = _make_session(transport=transport)

        with pytest.raises(ConfigurationError):
            session.connect_to(host, port)

        transport.open.assert_not_called()
        assert session.state == LinkState.DISCONNECTED

    def test_unreachable_vehicle_raises_connection_error(self):
        clock = _FakeClock()
        transport = SimulatedTransport(TelemetrySimulator(seed=7), clock=clock, reachable=False)
        session, _, _, events = _make_session(transport=transport, clock=clock)

        with pytest.raises(ConnectionError):
            session.connect()

        assert session.state == LinkState.DISCONNECTED
        assert events.of(EventType.CONNECTION_CHANGED)[-1]["reason"] == "failed"

    def test_unexpected_open_error_is_wrapped(self):
        transport = _make_mock_transport()
        transport.open.side_effect = RuntimeError("driver crashed")
        session, _, _, _ = _make_session(transport=transport)

        with pytest.raises(LinkConnectionError, match="driver crashed"):
            session.connect()

        transport.close.assert_called()
        assert session.is_connected() is False

    def test_ping_failure_raises(self):
        transport = _make_mock_transport()
        transport.send.side_effect = TransientSendFailure("network down")
        session, _, _, _ = _make_session(transport=transport)

        with pytest.raises(LinkConnectionError):
            session.connect()

        assert session.state == LinkState.DISCONNECTED

    def test_slow_handshake_times_out(self):
        clock = _FakeClock()
        transport = _make_mock_transport()

        def slow_open(config, *, timeout):
            clock.now += timeout + 1.0

        transport.open.side_effect = slow_open
        session, _, _, _ = _make_session(transport=transport, clock=clock, connect_timeout_seconds=2.0)

        with pytest.raises(LinkConnectionError, match="timeout"):
            session.connect()

        assert session.is_connected() is False

    def test_reconnect_tears_down_first(self):
        session, _, _, events = _make_session()
        session.connect()

        assert session.connect(ConnectionConfig(host="10.0.0.5", port=9000)) is True

        reasons = [event.get("reason") for event in events.of(EventType.CONNECTION_CHANGED)]
        assert "reconnect" in reasons
        assert session.connection_config.host == "10.0.0.5"

    def test_disconnect_during_connect_cancels(self):
        transport = _make_mock_transport()
        session, _, _, events = _make_session(transport=transport)
        transport.send.side_effect = lambda payload: session.disconnect()

        assert session.connect() is False

        assert session.state == LinkState.DISCONNECTED
        states = [event["state"] for event in events.of(EventType.CONNECTION_CHANGED)]
        assert LinkState.CONNECTED not in states
        transport.close.assert_called()

    def test_disconnect_closing_transport_before_ping_cancels(self):
        transport = _make_mock_transport()
        session, _, _, events = _make_session(transport=transport)

        def disconnect_then_fail(payload):
            session.disconnect()
            raise TransientSendFailure("UDP transport is not open")

        transport.send.side_effect = disconnect_then_fail

        assert session.connect() is False

        assert session.state == LinkState.DISCONNECTED
        reasons = [event.get("reason") for event in events.of(EventType.CONNECTION_CHANGED)]
        assert "failed" not in reasons


class TestPidSeeding:
    def test_prefers_vehicle_gains(self):
        session, transport, _, _ = _make_session()
        transport.simulator.apply_pid(PIDGains(p=2.0, i=0.3, d=0.1))

        session.connect()

        assert session.get_pid_parameters() == PIDGains(p=2.0, i=0.3, d=0.1)

    def test_falls_back_to_persisted_gains(self):
        transport = _make_mock_transport()
        settings = _make_settings()
        settings_store = SettingsStore(InMemoryKeyValueStore())
        settings_store.update_settings(p_gain="1.5", i_gain="0.2", d_gain="0.05")
        session = LinkSession(transport, settings_store, settings, clock=_FakeClock())

        session.connect()

        assert session.get_pid_parameters() == PIDGains(p=1.5, i=0.2, d=0.05)

    def test_none_when_disconnected(self):
        session, _, _, _ = _make_session()
        assert session.get_pid_parameters() is None


class TestDisconnect:
    def test_idempotent_when_disconnected(self):
        session, _, _, events = _make_session()

        for _ in range(5):
            assert session.disconnect() is None

        assert session.state == LinkState.DISCONNECTED
        assert events.events == []

    def test_single_transition_event(self):
        session, transport, _, events = _make_session()
        session.connect()

        session.disconnect()
        session.disconnect()

        disconnects = [
            event for event in events.of(EventType.CONNECTION_CHANGED) if event["state"] == LinkState.DISCONNECTED
        ]
        assert len(disconnects) == 1
        assert disconnects[0]["reason"] == "requested"
        assert transport.is_open() is False

    def test_close_errors_swallowed(self):
        transport = _make_mock_transport()
        transport.close.side_effect = OSError("already closed")
        session, _, _, _ = _make_session(transport=transport)
        session.connect()

        session.disconnect()

        assert session.is_connected() is False

    def test_clears_latest_sample_and_session_id(self):
        session, _, clock, _ = _make_session()
        session.connect()
        _advance(session, clock, 1.0)

        session.disconnect()

        assert session.get_telemetry() is None
        assert get_session_id() == ""
        assert get_extra_context() == {}

    def test_battery_level_survives_disconnect(self):
        session, _, clock, _ = _make_session()
        assert session.get_battery_level() is None
        session.connect()
        _advance(session, clock, 0.5)

        session.disconnect()

        assert session.get_battery_level() == 100.0

    def test_battery_does_not_drain_while_disconnected(self):
        session, _, clock, _ = _make_session()
        session.connect()
        _advance(session, clock, 1.0)
        session.disconnect()

        clock.now += 600.0
        session.connect()
        _advance(session, clock, 1.0)

        assert session.get_battery_level() == 100.0


class TestSendCommand:
    @pytest.mark.parametrize(
        "command",
        [ControlCommand(), ControlCommand(throttle=100), ControlCommand(yaw=-100, pitch=50, roll=-20)],
    )
    def test_no_command_without_link(self, command):
        transport = _make_mock_transport()
        session, _, _, events = _make_session(transport=transport)

        assert session.send_command(command) is False

        transport.send.assert_not_called()
        assert events.events == []

    def test_sends_when_connected(self):
        session, transport, _, _ = _make_session()
        session.connect()
        assert session.send_command(ControlCommand(throttle=60)) is True

    def test_transient_failure_returns_false(self):
        transport = _make_mock_transport()
        session, _, _, _ = _make_session(transport=transport)
        session.connect()
        transport.send.side_effect = TransientSendFailure("buffer full")

        assert session.send_command(ControlCommand(throttle=10)) is False
        assert session.is_connected() is True


class TestTelemetry:
    def test_none_when_disconnected(self):
        session, _, _, _ = _make_session()
        assert session.get_telemetry() is None

    def test_none_before_first_sample(self):
        session, _, clock, _ = _make_session()
        session.connect()
        clock.now = 0.4
        session.tick()
        assert session.get_telemetry() is None

    def test_scenario_climb_after_one_tick(self):
        session, _, clock, _ = _make_session()
        session.connect_to("192.168.4.1", "8888")
        session.send_command(ControlCommand(throttle=60, yaw=0, pitch=0, roll=0))

        _advance(session, clock, 0.5)

        assert session.get_telemetry().altitude > 0.0

    def test_emits_each_sample(self):
        session, _, clock, events = _make_session()
        session.connect()
        _advance(session, clock, 2.0)
        assert len(events.of(EventType.TELEMETRY_SAMPLED)) == 4

    def test_drops_stale_and_reordered_frames(self):
        transport = _make_mock_transport()
        session, _, clock, events = _make_session(transport=transport)
        session.connect()

        transport.receive.return_value = [
            encode_telemetry(TelemetrySample(altitude=5.0), sequence=5),
            encode_telemetry(TelemetrySample(altitude=3.0), sequence=3),
        ]
        _advance(session, clock, 0.5)
        transport.receive.return_value = [encode_telemetry(TelemetrySample(altitude=4.0), sequence=4)]
        _advance(session, clock, 0.5)

        samples = events.of(EventType.TELEMETRY_SAMPLED)
        assert [sample.altitude for sample in samples] == [3.0, 5.0]
        assert session.get_telemetry().altitude == 5.0

    def test_malformed_frames_dropped(self):
        transport = _make_mock_transport()
        session, _, clock, _ = _make_session(transport=transport)
        session.connect()
        transport.receive.return_value = [b"{broken", encode_telemetry(TelemetrySample(speed=1.0), sequence=1)]

        _advance(session, clock, 0.5)

        assert session.get_telemetry().speed == 1.0

    def test_gps_fix_matches_satellites(self):
        session, _, clock, events = _make_session()
        session.connect()
        session.send_command(ControlCommand(throttle=55, pitch=40))

        _advance(session, clock, 120.0)

        samples = events.of(EventType.TELEMETRY_SAMPLED)
        assert any(sample.gps_fix for sample in samples)
        for sample in samples:
            assert sample.gps_fix == (sample.satellites >= MINIMUM_SATELLITES_FOR_FIX)

    def test_battery_never_increases(self):
        session, _, clock, events = _make_session()
        session.connect()
        session.send_command(ControlCommand(throttle=70))

        _advance(session, clock, 600.0, step=1.0)

        levels = [sample.battery_percentage for sample in events.of(EventType.TELEMETRY_SAMPLED)]
        assert levels[-1] < levels[0]
        assert all(later <= earlier for earlier, later in zip(levels, levels[1:]))


class TestLiveness:
    def test_closed_transport_declares_link_lost(self):
        session, transport, clock, events = _make_session()
        session.connect()
        transport.simulate_link_loss()

        _advance(session, clock, 1.0)

        assert session.is_connected() is False
        assert events.of(EventType.CONNECTION_CHANGED)[-1]["reason"] == "link_lost"

    def test_telemetry_silence_declares_link_lost(self):
        transport = _make_mock_transport()
        session, _, clock, events = _make_session(transport=transport, telemetry_timeout_seconds=2.0)
        session.connect()

        _advance(session, clock, 2.0)
        assert session.is_connected() is True

        _advance(session, clock, 1.0)
        assert session.is_connected() is False
        assert events.of(EventType.CONNECTION_CHANGED)[-1]["reason"] == "link_lost"

    def test_silence_tolerated_without_timeout(self):
        transport = _make_mock_transport()
        session, _, clock, _ = _make_session(transport=transport)
        session.connect()

        _advance(session, clock, 30.0)

        assert session.is_connected() is True


class TestSendPidParameters:
    def test_false_when_disconnected(self):
        session, _, _, _ = _make_session()
        assert session.send_pid_parameters(1.0, 0.0, 0.0) is False

    def test_rejects_negative_gain(self):
        session, _, _, _ = _make_session()
        session.connect()
        with pytest.raises(ConfigurationError):
            session.send_pid_parameters(1.0, -0.5, 0.0)

    def test_applies_to_vehicle_and_active_copy(self):
        session, transport, _, _ = _make_session()
        session.connect()

        assert session.send_pid_parameters(2.5, 0.1, 0.02) is True

        assert session.get_pid_parameters() == PIDGains(p=2.5, i=0.1, d=0.02)
        assert transport.simulator.pid_gains == PIDGains(p=2.5, i=0.1, d=0.02)

    def test_failed_send_keeps_new_active_copy(self):
        transport = _make_mock_transport()
        session, _, _, _ = _make_session(transport=transport)
        session.connect()
        transport.send.side_effect = TransientSendFailure("dropped")

        assert session.send_pid_parameters(3.0, 0.0, 0.0) is False
        assert session.get_pid_parameters().p == 3.0


class TestEmergencyStop:
    def test_false_when_disconnected(self):
        session, _, _, _ = _make_session()
        assert session.emergency_stop() is False
        assert session.reset_emergency_stop() is False

    def test_grounds_immediately_and_holds_for_cooldown(self):
        session, _, clock, events = _make_session(emergency_cooldown_seconds=5.0)
        session.connect()
        session.send_command(ControlCommand(throttle=60))
        _advance(session, clock, 5.0)
        assert session.get_telemetry().altitude > 0.0

        assert session.emergency_stop() is True

        sample = session.get_telemetry()
        assert (sample.altitude, sample.speed) == (0.0, 0.0)

        session.send_command(ControlCommand(throttle=80))
        for _ in range(9):
            _advance(session, clock, 0.5)
            sample = session.get_telemetry()
            assert (sample.altitude, sample.speed) == (0.0, 0.0)
            assert session.is_emergency_stopped() is True

        _advance(session, clock, 0.5)
        assert session.is_emergency_stopped() is False
        assert [event["active"] for event in events.of(EventType.EMERGENCY_CHANGED)] == [True, False]

    def test_commands_accepted_while_latched(self):
        session, _, _, _ = _make_session()
        session.connect()
        session.emergency_stop()
        assert session.send_command(ControlCommand(throttle=80)) is True

    def test_reset_clears_latch_early(self):
        session, transport, clock, events = _make_session()
        session.connect()
        session.emergency_stop()

        assert session.reset_emergency_stop() is True

        assert session.is_emergency_stopped() is False
        assert transport.simulator.is_emergency_latched(clock.now) is False
        assert events.of(EventType.EMERGENCY_CHANGED)[-1] == {"active": False, "reason": "reset"}

    def test_disconnect_clears_latch(self):
        session, _, _, events = _make_session()
        session.connect()
        session.emergency_stop()

        session.disconnect()

        assert session.is_emergency_stopped() is False
        assert events.of(EventType.EMERGENCY_CHANGED)[-1]["active"] is False

    def test_latch_set_even_if_frame_not_sent(self):
        transport = _make_mock_transport()
        session, _, _, _ = _make_session(transport=transport)
        session.connect()
        transport.send.side_effect = TransientSendFailure("dropped")

        assert session.emergency_stop() is True
        assert session.is_emergency_stopped() is True
