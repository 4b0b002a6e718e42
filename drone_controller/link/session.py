"""Link session: connection lifecycle and command/telemetry gateway.

Owns the transport exclusively and enforces that no command, PID update
or telemetry read happens without an active session. Periodic work
(telemetry sampling, liveness checks, emergency cool-down) is driven by
``tick`` from the application loop; each schedule keeps its own due time
so they tolerate any interleaving.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from drone_controller.events import EventType
from drone_controller.exceptions import (
    ConfigurationError,
    LinkConnectionError,
    TransientSendFailure,
)
from drone_controller.link.models import ConnectionConfig, LinkState, PIDGains
from drone_controller.link.protocol import (
    PidMessage,
    TelemetryMessage,
    decode_inbound,
    encode_control,
    encode_pid,
    encode_signal,
)
from drone_controller.logging.context import bind_link_context, clear_context

if TYPE_CHECKING:
    from collections.abc import Callable

    from drone_controller.config import ControllerSettings
    from drone_controller.events import EventBus
    from drone_controller.link.models import ControlCommand
    from drone_controller.link.transport import Transport
    from drone_controller.storage.settings import SettingsStore
    from drone_controller.telemetry.models import TelemetrySample

logger = logging.getLogger(__name__)

_PID_QUERY_TIMEOUT_SECONDS: float = 0.25

_REASON_REQUESTED = "requested"
_REASON_RECONNECT = "reconnect"
_REASON_LINK_LOST = "link_lost"


class LinkSession:
    """Single logical session between the controller and one vehicle.

    States: DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED.
    The last transition happens on explicit ``disconnect`` or when the
    liveness check finds the link dead.

    ``connect`` is the only call that waits on the outside world and is
    bounded by the configured timeout. Every other call answers from
    local state.
    """

    def __init__(
        self,
        transport: Transport,
        settings_store: SettingsStore,
        settings: ControllerSettings,
        *,
        event_bus: EventBus | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize a disconnected session.

        Args:
            transport: Datagram transport toward the vehicle.
            settings_store: Source of the persisted endpoint and PID gains.
            settings: Controller runtime configuration (timeouts, periods).
            event_bus: Receives connection, telemetry and emergency events.
            clock: Monotonic clock in seconds.
        """
        self._transport = transport
        self._settings_store = settings_store
        self._event_bus = event_bus
        self._clock = clock

        self._connect_timeout_seconds = settings.connect_timeout_seconds
        self._telemetry_interval_seconds = settings.telemetry_interval_seconds
        self._liveness_interval_seconds = settings.liveness_interval_seconds
        self._emergency_cooldown_seconds = settings.emergency_cooldown_seconds
        self._telemetry_timeout_seconds = settings.telemetry_timeout_seconds

        self._lock = threading.RLock()
        self._state = LinkState.DISCONNECTED
        self._generation = 0
        self._config: ConnectionConfig | None = None
        self._active_pid: PIDGains | None = None
        self._battery_level: float | None = None

        self._latest: TelemetrySample | None = None
        self._latest_sequence: int | None = None
        self._last_frame_time: float | None = None
        self._emergency_until: float | None = None
        self._next_telemetry_due: float | None = None
        self._next_liveness_due: float | None = None

    @property
    def state(self) -> LinkState:
        """Return the current link state."""
        return self._state

    @property
    def connection_config(self) -> ConnectionConfig | None:
        """Return the endpoint of the current session, if any."""
        return self._config

    def is_connected(self) -> bool:
        return self._state == LinkState.CONNECTED

    def get_battery_level(self) -> float | None:
        """Return the last known battery percentage.

        Survives disconnects; None until the first telemetry sample.
        """
        return self._battery_level

    def connect_to(self, host: str, port: int | str) -> bool:
        """Connect to ``host:port`` given as raw UI input.

        Raises:
            ConfigurationError: If host or port is malformed.
            LinkConnectionError: If the vehicle cannot be reached.
        """
        try:
            config = ConnectionConfig(host=host, port=port)  # type: ignore[arg-type]
        except ValidationError as error:
            raise ConfigurationError.from_validation_error(error, subject="connection config") from error
        return self.connect(config)

    def connect(self, config: ConnectionConfig | None = None) -> bool:
        """Open the link and start telemetry sampling.

        An existing session is torn down first. Without ``config`` the
        persisted endpoint is used. A ``disconnect`` issued while this
        call is in flight cancels it.

        Args:
            config: Vehicle endpoint; defaults to the persisted one.

        Returns:
            True when connected, False when cancelled by a concurrent disconnect.

        Raises:
            LinkConnectionError: If the transport cannot be opened or the
                ping handshake fails or exceeds the timeout.
        """
        if config is None:
            config = self._settings_store.get_connection_config()

        if self.is_connected():
            logger.info("Already connected, tearing down session before reconnecting")
            self._disconnect(reason=_REASON_RECONNECT)

        with self._lock:
            self._generation += 1
            generation = self._generation
            self._state = LinkState.CONNECTING
        self._emit(EventType.CONNECTION_CHANGED, self._connection_event(config))

        logger.info(
            "Connecting to vehicle at %s:%d (timeout=%.1fs)",
            config.host,
            config.port,
            self._connect_timeout_seconds,
        )
        started_at = self._clock()
        try:
            self._transport.open(config, timeout=self._connect_timeout_seconds)
            self._transport.send(encode_signal("ping"))
            elapsed_seconds = self._clock() - started_at
            if elapsed_seconds > self._connect_timeout_seconds:
                raise LinkConnectionError(
                    f"Handshake took {elapsed_seconds:.1f}s, "
                    f"exceeding the {self._connect_timeout_seconds:.1f}s timeout",
                    host=config.host,
                    port=config.port,
                )
        except Exception as error:
            if not self._abort_connect(generation):
                logger.info("Connect to %s:%d cancelled by disconnect", config.host, config.port)
                return False
            logger.exception("Failed to connect to vehicle at %s:%d", config.host, config.port)
            if isinstance(error, LinkConnectionError):
                raise
            raise LinkConnectionError(
                f"Failed to connect to vehicle at {config.host}:{config.port}: {error}",
                host=config.host,
                port=config.port,
            ) from error

        active_pid = self._seed_pid_gains()

        with self._lock:
            cancelled = self._generation != generation
            if not cancelled:
                now = self._clock()
                self._state = LinkState.CONNECTED
                self._config = config
                self._active_pid = active_pid
                self._latest = None
                self._latest_sequence = None
                self._last_frame_time = now
                self._emergency_until = None
                self._next_telemetry_due = now + self._telemetry_interval_seconds
                self._next_liveness_due = now + self._liveness_interval_seconds

        if cancelled:
            logger.info("Connect to %s:%d cancelled by disconnect", config.host, config.port)
            self._close_transport()
            return False

        current_session = bind_link_context(host=config.host, port=config.port)
        logger.info(
            "Connected to vehicle at %s:%d (session=%s, pid=%s)",
            config.host,
            config.port,
            current_session,
            active_pid.model_dump(),
        )
        self._emit(EventType.CONNECTION_CHANGED, self._connection_event(config))
        return True

    def disconnect(self) -> None:
        """Tear down the session. Never raises; idempotent when disconnected."""
        self._disconnect(reason=_REASON_REQUESTED)

    def send_command(self, command: ControlCommand) -> bool:
        """Forward a stick command, fire-and-forget.

        Returns:
            True if the frame was handed to the transport, False if not
            connected or the send failed.
        """
        if not self.is_connected():
            logger.debug("Not connected, dropping command")
            return False

        try:
            self._transport.send(encode_control(command))
        except TransientSendFailure:
            logger.warning("Command frame dropped", exc_info=True)
            return False
        except Exception:
            logger.exception("Unexpected transport error sending command")
            return False
        return True

    def get_telemetry(self) -> TelemetrySample | None:
        """Return the latest sample, or None when not connected or not yet sampled."""
        with self._lock:
            if self._state != LinkState.CONNECTED:
                return None
            return self._latest

    def send_pid_parameters(self, p: float, i: float, d: float) -> bool:
        """Apply gains to the active session and push them to the vehicle.

        Does not persist; see ``PidConfigurationBridge.save``.

        Returns:
            False if not connected or the send failed, True otherwise.

        Raises:
            ConfigurationError: If any gain is negative or not a number.
        """
        if not self.is_connected():
            logger.debug("Not connected, cannot send PID parameters")
            return False

        try:
            gains = PIDGains(p=p, i=i, d=d)
        except ValidationError as error:
            raise ConfigurationError.from_validation_error(error, subject="PID gains") from error

        with self._lock:
            self._active_pid = gains

        try:
            self._transport.send(encode_pid(gains))
        except TransientSendFailure:
            logger.warning("PID update frame dropped", exc_info=True)
            return False
        except Exception:
            logger.exception("Unexpected transport error sending PID parameters")
            return False

        logger.info("PID parameters applied: p=%.3f i=%.3f d=%.3f", gains.p, gains.i, gains.d)
        return True

    def get_pid_parameters(self) -> PIDGains | None:
        """Return the active gains, or None when not connected."""
        with self._lock:
            if self._state != LinkState.CONNECTED:
                return None
            return self._active_pid

    def emergency_stop(self) -> bool:
        """Ground the vehicle and latch for the cool-down window.

        While latched every sample reports zero altitude and speed.
        Commands are still accepted so the pilot can attempt recovery.

        Returns:
            False if not connected, True otherwise.
        """
        if not self.is_connected():
            return False

        try:
            self._transport.send(encode_signal("emergency_stop"))
        except Exception:
            logger.exception("Emergency stop frame could not be sent; latching locally")

        with self._lock:
            self._emergency_until = self._clock() + self._emergency_cooldown_seconds
            if self._latest is not None:
                self._latest = self._latest.grounded()

        logger.warning("EMERGENCY STOP activated (cooldown=%.1fs)", self._emergency_cooldown_seconds)
        self._emit(EventType.EMERGENCY_CHANGED, {"active": True})
        return True

    def reset_emergency_stop(self) -> bool:
        """Clear the emergency latch before the cool-down expires."""
        if not self.is_connected():
            return False

        try:
            self._transport.send(encode_signal("emergency_reset"))
        except Exception:
            logger.exception("Emergency reset frame could not be sent")

        self._clear_emergency(reason="reset")
        return True

    def is_emergency_stopped(self) -> bool:
        with self._lock:
            return self._emergency_until is not None

    def tick(self, now: float | None = None) -> None:
        """Run whichever periodic schedules are due.

        Args:
            now: Monotonic time; defaults to the session clock.
        """
        if now is None:
            now = self._clock()
        if not self.is_connected():
            return

        with self._lock:
            emergency_expired = self._emergency_until is not None and now >= self._emergency_until
        if emergency_expired:
            self._clear_emergency(reason="cooldown")

        if self._is_due(self._next_telemetry_due, now):
            self._sample_telemetry(now)
            with self._lock:
                self._next_telemetry_due = now + self._telemetry_interval_seconds

        if self._is_due(self._next_liveness_due, now):
            with self._lock:
                self._next_liveness_due = now + self._liveness_interval_seconds
            self._check_liveness(now)

    def _is_due(self, due_time: float | None, now: float) -> bool:
        return self.is_connected() and due_time is not None and now >= due_time

    def _sample_telemetry(self, now: float) -> None:
        """Drain inbound frames and publish every newer telemetry sample."""
        try:
            frames = self._transport.receive()
        except Exception:
            logger.exception("Telemetry receive failed, skipping tick")
            return

        messages: list[TelemetryMessage] = []
        for payload in frames:
            try:
                message = decode_inbound(payload)
            except ValueError:
                logger.warning("Dropping malformed inbound frame", exc_info=True)
                continue
            if isinstance(message, TelemetryMessage):
                messages.append(message)
            elif isinstance(message, PidMessage):
                logger.debug("Vehicle reports PID gains p=%s i=%s d=%s", message.p, message.i, message.d)

        published: list[TelemetrySample] = []
        with self._lock:
            if self._state != LinkState.CONNECTED:
                return
            for message in sorted(messages, key=lambda item: item.sequence):
                if self._latest_sequence is not None and message.sequence <= self._latest_sequence:
                    logger.debug("Dropping stale telemetry frame %d", message.sequence)
                    continue
                sample = message.to_sample()
                if self._emergency_until is not None:
                    sample = sample.grounded()
                self._latest = sample
                self._latest_sequence = message.sequence
                self._last_frame_time = now
                self._battery_level = sample.battery_percentage
                published.append(sample)

        for sample in published:
            self._emit(EventType.TELEMETRY_SAMPLED, sample)

    def _check_liveness(self, now: float) -> None:
        if not self._transport.is_open():
            logger.warning("Transport closed underneath the session")
            self._disconnect(reason=_REASON_LINK_LOST)
            return

        if self._telemetry_timeout_seconds is None or self._last_frame_time is None:
            return

        silence_seconds = now - self._last_frame_time
        if silence_seconds > self._telemetry_timeout_seconds:
            logger.warning("No telemetry for %.1fs, declaring link lost", silence_seconds)
            self._disconnect(reason=_REASON_LINK_LOST)

    def _seed_pid_gains(self) -> PIDGains:
        """Prefer the gains applied on the vehicle over the persisted copy."""
        try:
            vehicle_gains = self._transport.query_pid_gains(timeout=_PID_QUERY_TIMEOUT_SECONDS)
        except Exception:
            logger.warning("PID query failed, using persisted gains", exc_info=True)
            vehicle_gains = None

        if vehicle_gains is not None:
            logger.debug("Seeding active PID gains from vehicle")
            return vehicle_gains

        logger.debug("Vehicle did not report PID gains, seeding from settings")
        return self._settings_store.get_settings().pid_gains()

    def _disconnect(self, *, reason: str) -> None:
        with self._lock:
            if self._state == LinkState.DISCONNECTED:
                return
            config = self._config
            was_latched = self._emergency_until is not None
            self._generation += 1
            self._state = LinkState.DISCONNECTED
            self._config = None
            self._active_pid = None
            self._latest = None
            self._latest_sequence = None
            self._last_frame_time = None
            self._emergency_until = None
            self._next_telemetry_due = None
            self._next_liveness_due = None

        self._close_transport()
        logger.info("Disconnected from vehicle (reason=%s)", reason)
        clear_context()

        if was_latched:
            self._emit(EventType.EMERGENCY_CHANGED, {"active": False, "reason": reason})
        event = self._connection_event(config)
        event["reason"] = reason
        self._emit(EventType.CONNECTION_CHANGED, event)

    def _abort_connect(self, generation: int) -> bool:
        """Close the transport after a failed open; False if a disconnect got there first."""
        with self._lock:
            still_current = self._generation == generation
            if still_current:
                self._state = LinkState.DISCONNECTED
        self._close_transport()
        if still_current:
            self._emit(EventType.CONNECTION_CHANGED, {"state": LinkState.DISCONNECTED, "reason": "failed"})
        return still_current

    def _clear_emergency(self, *, reason: str) -> None:
        with self._lock:
            if self._emergency_until is None:
                return
            self._emergency_until = None
        logger.info("Emergency stop cleared (reason=%s)", reason)
        self._emit(EventType.EMERGENCY_CHANGED, {"active": False, "reason": reason})

    def _close_transport(self) -> None:
        try:
            self._transport.close()
        except Exception:
            logger.exception("Error closing transport")

    def _connection_event(self, config: ConnectionConfig | None) -> dict[str, Any]:
        event: dict[str, Any] = {"state": self._state}
        if config is not None:
            event["host"] = config.host
            event["port"] = config.port
        return event

    def _emit(self, event_type: EventType, data: Any) -> None:
        if self._event_bus is not None:
            self._event_bus.emit(event_type, data)
