"""Datagram transports between the link session and the vehicle.

``Transport`` is the capability the session owns exclusively. Two
implementations share the JSON wire format in ``link.protocol``:

- ``UdpTransport`` talks to a real vehicle over a connected UDP socket.
- ``SimulatedTransport`` feeds the same frames to a ``TelemetrySimulator``.
"""

from __future__ import annotations

import logging
import socket
import time
from typing import TYPE_CHECKING, Protocol

from drone_controller.exceptions import LinkConnectionError, TransientSendFailure
from drone_controller.link.models import ControlCommand, PIDGains
from drone_controller.link.protocol import (
    PidMessage,
    decode_frame,
    decode_inbound,
    encode_pid,
    encode_signal,
    encode_telemetry,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from drone_controller.link.models import ConnectionConfig
    from drone_controller.telemetry.simulator import TelemetrySimulator

logger = logging.getLogger(__name__)

_BIND_ADDRESS: str = "0.0.0.0"
_MAX_DATAGRAM_BYTES: int = 4096
_MAX_FRAMES_PER_RECEIVE: int = 256


class Transport(Protocol):
    """Connectionless, unordered, unacknowledged link to the vehicle."""

    def open(self, config: ConnectionConfig, *, timeout: float) -> None:
        """Open the transport toward ``config``.

        Raises:
            LinkConnectionError: If the transport cannot be opened in time.
        """
        ...

    def send(self, payload: bytes) -> None:
        """Send one datagram, fire-and-forget.

        Raises:
            TransientSendFailure: If the datagram could not be handed off.
        """
        ...

    def receive(self) -> list[bytes]:
        """Drain every datagram received since the last call without blocking."""
        ...

    def query_pid_gains(self, *, timeout: float) -> PIDGains | None:
        """Ask the vehicle for its applied gains; None if it does not answer."""
        ...

    def is_open(self) -> bool:
        ...

    def close(self) -> None:
        ...


class UdpTransport:
    """UDP socket transport for a real vehicle.

    The socket is bound to an ephemeral local port and connected to the
    vehicle endpoint, so ``send`` needs no destination and inbound
    datagrams from other hosts are filtered by the kernel.
    """

    def __init__(self) -> None:
        self._socket: socket.socket | None = None
        self._failed = False
        self._pending: list[bytes] = []

    def open(self, config: ConnectionConfig, *, timeout: float) -> None:
        """Bind a UDP socket and connect it to the vehicle endpoint.

        Raises:
            LinkConnectionError: If the socket cannot be created or bound in time.
        """
        self.close()
        logger.info("Opening UDP transport to %s:%d (timeout=%.1fs)", config.host, config.port, timeout)

        udp_socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            udp_socket.settimeout(timeout)
            udp_socket.bind((_BIND_ADDRESS, 0))
            udp_socket.connect(config.endpoint)
            udp_socket.setblocking(False)
        except OSError as error:
            udp_socket.close()
            raise LinkConnectionError(
                f"Failed to open UDP transport to {config.host}:{config.port}: {error}",
                host=config.host,
                port=config.port,
            ) from error

        self._socket = udp_socket
        self._failed = False
        logger.debug("UDP transport bound to %s", udp_socket.getsockname())

    def send(self, payload: bytes) -> None:
        udp_socket = self._require_socket()
        try:
            udp_socket.send(payload)
        except OSError as error:
            raise TransientSendFailure(f"UDP send failed: {error}") from error

    def receive(self) -> list[bytes]:
        if self._socket is None:
            return []

        frames, self._pending = self._pending, []
        while len(frames) < _MAX_FRAMES_PER_RECEIVE:
            try:
                frames.append(self._socket.recv(_MAX_DATAGRAM_BYTES))
            except BlockingIOError:
                break
            except ConnectionRefusedError:
                # ICMP port unreachable from an earlier send; the next frame may succeed
                logger.debug("Vehicle port unreachable")
                break
            except OSError:
                logger.exception("UDP receive failed, marking transport as failed")
                self._failed = True
                break
        return frames

    def query_pid_gains(self, *, timeout: float) -> PIDGains | None:
        """Send a pid_query and wait up to ``timeout`` for a pid report.

        Telemetry frames that arrive meanwhile are kept for the next
        ``receive`` call.
        """
        udp_socket = self._require_socket()
        try:
            udp_socket.send(encode_signal("pid_query"))
        except OSError:
            logger.warning("Could not send pid_query, vehicle gains unknown")
            return None

        deadline = time.monotonic() + timeout
        try:
            while (remaining := deadline - time.monotonic()) > 0:
                udp_socket.settimeout(remaining)
                try:
                    payload = udp_socket.recv(_MAX_DATAGRAM_BYTES)
                except (TimeoutError, ConnectionRefusedError):
                    return None
                try:
                    message = decode_inbound(payload)
                except ValueError:
                    logger.debug("Dropping malformed frame while waiting for pid report")
                    continue
                if isinstance(message, PidMessage):
                    return PIDGains(p=message.p, i=message.i, d=message.d)
                self._pending.append(payload)
            return None
        except OSError:
            logger.exception("UDP receive failed while querying PID gains")
            return None
        finally:
            udp_socket.setblocking(False)

    def is_open(self) -> bool:
        return self._socket is not None and not self._failed

    def close(self) -> None:
        if self._socket is None:
            return
        try:
            self._socket.close()
        finally:
            self._socket = None
            self._pending = []
            logger.info("UDP transport closed")

    def _require_socket(self) -> socket.socket:
        if self._socket is None:
            raise TransientSendFailure("UDP transport is not open")
        return self._socket


class SimulatedTransport:
    """Transport whose far end is an in-process ``TelemetrySimulator``.

    Outbound frames are decoded and applied to the simulator; each
    ``receive`` advances the simulator by one tick and returns the
    resulting telemetry frame.
    """

    def __init__(
        self,
        simulator: TelemetrySimulator,
        *,
        clock: Callable[[], float] = time.monotonic,
        emergency_cooldown_seconds: float = 5.0,
        open_delay_seconds: float = 0.0,
        reachable: bool = True,
    ) -> None:
        """Initialize the simulated transport.

        Args:
            simulator: Vehicle model on the far end of the link.
            clock: Monotonic clock shared with the link session.
            emergency_cooldown_seconds: Vehicle-side emergency latch duration.
            open_delay_seconds: Simulated bind/handshake latency.
            reachable: When False, ``open`` fails as an unreachable vehicle would.
        """
        self._simulator = simulator
        self._clock = clock
        self._emergency_cooldown_seconds = emergency_cooldown_seconds
        self._open_delay_seconds = open_delay_seconds
        self._reachable = reachable
        self._is_open = False
        self._outbox: list[bytes] = []
        self.pings_received = 0

    @property
    def simulator(self) -> TelemetrySimulator:
        return self._simulator

    def open(self, config: ConnectionConfig, *, timeout: float) -> None:
        if not self._reachable:
            raise LinkConnectionError(
                f"Simulated vehicle at {config.host}:{config.port} is unreachable",
                host=config.host,
                port=config.port,
            )
        if self._open_delay_seconds > timeout:
            raise LinkConnectionError(
                f"Timed out after {timeout:.1f}s opening simulated link",
                host=config.host,
                port=config.port,
            )
        if self._open_delay_seconds:
            time.sleep(self._open_delay_seconds)

        self._is_open = True
        self._outbox = []
        logger.info("Simulated link open (vehicle at %s:%d)", config.host, config.port)

    def send(self, payload: bytes) -> None:
        if not self._is_open:
            raise TransientSendFailure("Simulated link is not open")
        try:
            self._deliver(decode_frame(payload))
        except ValueError as error:
            raise TransientSendFailure(f"Vehicle rejected frame: {error}") from error

    def _deliver(self, frame: dict[str, object]) -> None:
        """Apply one decoded outbound frame to the simulated vehicle."""
        frame_type = frame.get("type")
        if frame_type is None:
            self._simulator.apply_command(ControlCommand.model_validate(frame))
        elif frame_type == "pid":
            message = PidMessage.model_validate(frame)
            self._simulator.apply_pid(PIDGains(p=message.p, i=message.i, d=message.d))
        elif frame_type == "ping":
            self.pings_received += 1
        elif frame_type == "pid_query":
            self._outbox.append(encode_pid(self._simulator.pid_gains))
        elif frame_type == "emergency_stop":
            self._simulator.trigger_emergency(self._clock(), self._emergency_cooldown_seconds)
        elif frame_type == "emergency_reset":
            self._simulator.reset_emergency()
        else:
            logger.debug("Simulated vehicle ignoring frame type %s", frame_type)

    def receive(self) -> list[bytes]:
        if not self._is_open:
            return []
        frames, self._outbox = self._outbox, []
        sample = self._simulator.step(self._clock())
        frames.append(encode_telemetry(sample, sequence=self._simulator.sequence))
        return frames

    def query_pid_gains(self, *, timeout: float) -> PIDGains | None:  # noqa: ARG002
        if not self._is_open:
            return None
        return self._simulator.pid_gains

    def is_open(self) -> bool:
        return self._is_open

    def close(self) -> None:
        if self._is_open:
            logger.info("Simulated link closed")
        self._is_open = False
        self._outbox = []
        self._simulator.reset()

    def simulate_link_loss(self) -> None:
        """Drop the link as if the vehicle went out of range."""
        logger.warning("Simulated link lost")
        self._is_open = False
