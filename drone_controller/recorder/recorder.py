"""Flight recorder: buffers telemetry while armed and summarizes it on stop."""

from __future__ import annotations

import logging
import math
import threading
import time
from datetime import datetime
from typing import TYPE_CHECKING

from drone_controller.events import EventType
from drone_controller.recorder.models import FlightLog, RecordedSample, RecorderState

if TYPE_CHECKING:
    from collections.abc import Callable

    from drone_controller.events import EventBus
    from drone_controller.link.session import LinkSession
    from drone_controller.storage.archive import LogArchive
    from drone_controller.telemetry.models import TelemetrySample

logger = logging.getLogger(__name__)

_EARTH_RADIUS_METERS: float = 6_371_000.0
_DEGREES_TO_RADIANS: float = math.pi / 180.0
_MILLISECONDS_PER_SECOND: int = 1000
_DEFAULT_NAME_DATE_FORMAT: str = "%b %d, %Y"


class FlightRecorder:
    """Records telemetry samples between ``start_logging`` and ``stop_logging``.

    Samples arrive through the event bus (``TELEMETRY_SAMPLED``) or by
    calling ``append`` directly. Only the recording state accepts them.
    """

    def __init__(
        self,
        session: LinkSession,
        archive: LogArchive,
        *,
        event_bus: EventBus | None = None,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize an idle recorder.

        Args:
            session: Link session that must be connected to start recording.
            archive: Destination for finished flight logs.
            event_bus: Source of telemetry samples and sink for saved logs.
            wall_clock: Epoch time in seconds, used for sample timestamps and ids.
        """
        self._session = session
        self._archive = archive
        self._event_bus = event_bus
        self._wall_clock = wall_clock

        self._lock = threading.Lock()
        self._state = RecorderState.IDLE
        self._buffer: list[RecordedSample] = []
        self._last_log_id: int | None = None

        if event_bus is not None:
            event_bus.subscribe(EventType.TELEMETRY_SAMPLED, self._on_telemetry)

    @property
    def state(self) -> RecorderState:
        return self._state

    def is_recording(self) -> bool:
        return self._state == RecorderState.RECORDING

    def sample_count(self) -> int:
        with self._lock:
            return len(self._buffer)

    def start_logging(self) -> bool:
        """Begin a new recording with an empty buffer.

        Returns:
            False if the session is not connected or a recording is
            already in progress, True otherwise.
        """
        if not self._session.is_connected():
            logger.info("Cannot start flight log: not connected")
            return False

        with self._lock:
            if self._state == RecorderState.RECORDING:
                logger.info("Flight log already recording, ignoring start")
                return False
            self._buffer = []
            self._state = RecorderState.RECORDING

        logger.info("Flight log recording started")
        return True

    def append(self, sample: TelemetrySample, timestamp_ms: int | None = None) -> bool:
        """Buffer one sample if recording.

        Args:
            sample: Telemetry snapshot.
            timestamp_ms: Epoch milliseconds; defaults to the wall clock.

        Returns:
            True if the sample was buffered.
        """
        if timestamp_ms is None:
            timestamp_ms = self._now_ms()

        with self._lock:
            if self._state != RecorderState.RECORDING:
                return False
            self._buffer.append(RecordedSample(timestamp_ms=timestamp_ms, sample=sample))
        return True

    def stop_logging(self, name: str | None = None) -> FlightLog | None:
        """Finish the recording, archive the summary and return it.

        Args:
            name: Log name; defaults to "Flight <Mon DD, YYYY>" of the start time.

        Returns:
            The saved log, or None if not recording or nothing was buffered.

        Raises:
            StorageError: If the archive write fails. The recording and its
                buffer are left untouched.
        """
        with self._lock:
            if self._state != RecorderState.RECORDING:
                return None
            buffer = list(self._buffer)

            if not buffer:
                self._state = RecorderState.IDLE
                logger.info("Flight log stopped with no samples, nothing saved")
                return None

            log = self._summarize(buffer, name=name)
            self._archive.save(log)

            self._last_log_id = int(log.id)
            self._buffer = []
            self._state = RecorderState.IDLE

        logger.info(
            "Flight log %s saved: %ds, max altitude %.1fm, distance %.1fm",
            log.id,
            log.duration,
            log.max_altitude,
            log.distance,
        )
        if self._event_bus is not None:
            self._event_bus.emit(EventType.FLIGHT_LOG_SAVED, log)
        return log

    def _on_telemetry(self, sample: TelemetrySample) -> None:
        self.append(sample)

    def _summarize(self, buffer: list[RecordedSample], *, name: str | None) -> FlightLog:
        start_time = buffer[0].timestamp_ms
        end_time = buffer[-1].timestamp_ms
        samples = [entry.sample for entry in buffer]

        return FlightLog(
            id=self._next_log_id(),
            name=name or _default_name(start_time),
            start_time=start_time,
            duration=max(0, (end_time - start_time) // _MILLISECONDS_PER_SECOND),
            max_altitude=max(sample.altitude for sample in samples),
            max_speed=max(abs(sample.speed) for sample in samples),
            avg_battery_percentage=sum(sample.battery_percentage for sample in samples) / len(samples),
            distance=_path_distance(samples),
            sample_count=len(samples),
        )

    def _next_log_id(self) -> str:
        """Derive an id from the wall clock, bumped past the previous one."""
        candidate = self._now_ms()
        if self._last_log_id is not None and candidate <= self._last_log_id:
            candidate = self._last_log_id + 1
        return str(candidate)

    def _now_ms(self) -> int:
        return int(self._wall_clock() * _MILLISECONDS_PER_SECOND)


def _default_name(start_time_ms: int) -> str:
    started_at = datetime.fromtimestamp(start_time_ms / _MILLISECONDS_PER_SECOND)
    return f"Flight {started_at.strftime(_DEFAULT_NAME_DATE_FORMAT)}"


def _path_distance(samples: list[TelemetrySample]) -> float:
    """Sum great-circle legs between consecutive samples that both have a fix."""
    distance = 0.0
    for previous_sample, sample in zip(samples, samples[1:]):
        if not (previous_sample.gps_fix and sample.gps_fix):
            continue
        distance += _haversine_distance(
            latitude_1=previous_sample.latitude,
            longitude_1=previous_sample.longitude,
            latitude_2=sample.latitude,
            longitude_2=sample.longitude,
        )
    return distance


def _haversine_distance(
    *,
    latitude_1: float,
    longitude_1: float,
    latitude_2: float,
    longitude_2: float,
) -> float:
    """Compute the great-circle distance between two GPS coordinates in meters."""
    delta_latitude = (latitude_2 - latitude_1) * _DEGREES_TO_RADIANS
    delta_longitude = (longitude_2 - longitude_1) * _DEGREES_TO_RADIANS

    haversine = (
        math.sin(delta_latitude / 2.0) ** 2
        + math.cos(latitude_1 * _DEGREES_TO_RADIANS)
        * math.cos(latitude_2 * _DEGREES_TO_RADIANS)
        * math.sin(delta_longitude / 2.0) ** 2
    )
    return _EARTH_RADIUS_METERS * 2.0 * math.atan2(math.sqrt(haversine), math.sqrt(1.0 - haversine))
