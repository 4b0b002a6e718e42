"""Simulated vehicle producing telemetry from commanded stick inputs.

Stands in for the flight controller at the other end of the link. Each
``step`` advances the vehicle by one sampling tick using bounded
random-walk updates. Seeding the random source makes every sample
reproducible.
"""

from __future__ import annotations

import logging
import math
import random
from typing import TYPE_CHECKING

from drone_controller.link.models import ControlCommand, PIDGains
from drone_controller.telemetry.models import MINIMUM_SATELLITES_FOR_FIX, TelemetrySample

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

# Flight model
_TAKEOFF_THROTTLE: int = 10
_HOVER_THROTTLE: int = 50
_ALTITUDE_DAMPING: float = 500.0
_SPEED_FACTOR: float = 0.2
_ATTITUDE_FACTOR: float = 0.4
_YAW_RATE: float = 0.1
_LANDING_THROTTLE: int = 5
_LANDING_HOLD_SECONDS: float = 2.0

# Noise intensity and clamps per channel
_ALTITUDE_NOISE: float = 0.005
_SPEED_NOISE: float = 0.2
_ATTITUDE_NOISE: float = 0.5
_YAW_NOISE: float = 0.3
_TEMPERATURE_NOISE: float = 0.1
_PITCH_LIMITS: tuple[float, float] = (-25.0, 25.0)
_ROLL_LIMITS: tuple[float, float] = (-30.0, 30.0)
_ESC_TEMPERATURE_LIMITS: tuple[float, float] = (25.0, 80.0)
_MCU_TEMPERATURE_LIMITS: tuple[float, float] = (30.0, 70.0)

# Battery model
_BATTERY_DECAY_INTERVAL_SECONDS: float = 30.0
_BATTERY_DECAY_PERCENT: float = 1.0
_BATTERY_FLOOR_PERCENT: float = 5.0
_FULL_VOLTAGE: float = 11.1
_VOLTAGE_RANGE: float = 3.3

# GPS model
_MAXIMUM_SATELLITES: int = 12
_SATELLITE_GAIN_PROBABILITY: float = 0.2
_HOME_LATITUDE: float = 37.7749
_HOME_LONGITUDE: float = -122.4194
_HOME_JITTER_DEGREES: float = 0.005
_DRIFT_DEGREES_PER_SPEED: float = 0.00001
_DEGREES_TO_RADIANS: float = math.pi / 180.0

_FULL_CIRCLE_DEGREES: float = 360.0


def _clamp(value: float, lower: float, upper: float) -> float:
    return min(upper, max(lower, value))


def battery_voltage_for(percentage: float) -> float:
    """Map battery percentage linearly onto the pack voltage."""
    return _FULL_VOLTAGE - ((100.0 - percentage) / 100.0) * _VOLTAGE_RANGE


class TelemetrySimulator:
    """Deterministic stand-in for a real vehicle's telemetry stream.

    The simulator never raises. It keeps its own flight state (grounded
    or flying, emergency latch, battery timer) and advances it one tick
    per ``step`` call.
    """

    def __init__(self, *, seed: int | None = None) -> None:
        """Initialize a grounded, fully charged vehicle.

        Args:
            seed: Random seed; identical seeds yield identical samples.
        """
        self._random = random.Random(seed)
        self._command = ControlCommand()
        self._pid = PIDGains()
        self._sample = TelemetrySample()
        self._is_flying = False
        self._flight_start_time: float | None = None
        self._low_throttle_since: float | None = None
        self._emergency_until: float | None = None
        self._battery_clock_start: float | None = None
        self._battery_decay_steps = 0
        self._sequence = 0

    @property
    def is_flying(self) -> bool:
        return self._is_flying

    @property
    def flight_start_time(self) -> float | None:
        return self._flight_start_time

    @property
    def pid_gains(self) -> PIDGains:
        """Gains currently applied on the vehicle."""
        return self._pid

    @property
    def sequence(self) -> int:
        """Sequence number of the most recently produced sample."""
        return self._sequence

    def apply_command(self, command: ControlCommand) -> None:
        """Store the latest commanded axes; they take effect on the next step."""
        self._command = command

    def apply_pid(self, gains: PIDGains) -> None:
        self._pid = gains

    def is_emergency_latched(self, now: float) -> bool:
        return self._emergency_until is not None and now < self._emergency_until

    def trigger_emergency(self, now: float, cooldown_seconds: float) -> None:
        """Ground the vehicle immediately and hold it for ``cooldown_seconds``."""
        self._emergency_until = now + cooldown_seconds
        self._land()
        logger.warning("Simulated vehicle emergency stop (cooldown=%.1fs)", cooldown_seconds)

    def reset_emergency(self) -> None:
        self._emergency_until = None

    def reset(self) -> None:
        """Ground the vehicle and clear the flight-start marker.

        The battery percentage survives, as it would on a real pack, but the
        decay clock stops until the next ``step``.
        """
        self._land()
        self._battery_clock_start = None
        self._battery_decay_steps = 0
        self._command = ControlCommand()
        self._emergency_until = None
        self._low_throttle_since = None

    def step(self, now: float) -> TelemetrySample:
        """Advance the vehicle by one sampling tick.

        Args:
            now: Monotonic time of this tick in seconds.

        Returns:
            The new telemetry sample.
        """
        self._sequence += 1
        self._update_battery(now)

        if self.is_emergency_latched(now):
            self._sample = self._sample.grounded()
            return self._sample

        if self._emergency_until is not None:
            self._emergency_until = None
            logger.info("Simulated vehicle emergency latch cleared")

        self._update_flight_state(now)
        if self._is_flying:
            self._update_flight()
            self._update_gps()

        return self._sample

    def _update_battery(self, now: float) -> None:
        """Drop one percent per elapsed decay interval, regardless of flight state."""
        if self._battery_clock_start is None:
            self._battery_clock_start = now
            return

        due_steps = int((now - self._battery_clock_start) // _BATTERY_DECAY_INTERVAL_SECONDS)
        if due_steps <= self._battery_decay_steps:
            return

        missed_steps = due_steps - self._battery_decay_steps
        self._battery_decay_steps = due_steps
        percentage = self._sample.battery_percentage
        if percentage > _BATTERY_FLOOR_PERCENT:
            percentage = max(
                _BATTERY_FLOOR_PERCENT,
                percentage - missed_steps * _BATTERY_DECAY_PERCENT,
            )
        self._sample = self._sample.model_copy(
            update={
                "battery_percentage": percentage,
                "battery_voltage": battery_voltage_for(percentage),
            }
        )

    def _update_flight_state(self, now: float) -> None:
        """Detect takeoff and sustained low-throttle landing."""
        throttle = self._command.throttle

        if not self._is_flying and throttle > _TAKEOFF_THROTTLE:
            self._is_flying = True
            self._flight_start_time = now
            self._low_throttle_since = None
            logger.info("Simulated vehicle took off (throttle=%d)", throttle)
            return

        if not self._is_flying:
            return

        if throttle >= _LANDING_THROTTLE:
            self._low_throttle_since = None
            return

        if self._low_throttle_since is None:
            self._low_throttle_since = now
        elif now - self._low_throttle_since >= _LANDING_HOLD_SECONDS:
            logger.info("Simulated vehicle landed after %.1fs at low throttle", now - self._low_throttle_since)
            self._land()

    def _update_flight(self) -> None:
        command = self._command
        sample = self._sample
        shift = self._random_shift

        altitude = max(0.0, sample.altitude + (command.throttle - _HOVER_THROTTLE) / _ALTITUDE_DAMPING)
        speed = max(0.0, command.pitch * _SPEED_FACTOR)
        yaw = (sample.yaw + command.yaw * _YAW_RATE + shift(0.0, _YAW_NOISE)) % _FULL_CIRCLE_DEGREES

        self._sample = sample.model_copy(
            update={
                "altitude": shift(altitude, _ALTITUDE_NOISE, lower=0.0),
                "speed": shift(speed, _SPEED_NOISE, lower=0.0),
                "pitch": shift(command.pitch * _ATTITUDE_FACTOR, _ATTITUDE_NOISE, *_PITCH_LIMITS),
                "roll": shift(command.roll * _ATTITUDE_FACTOR, _ATTITUDE_NOISE, *_ROLL_LIMITS),
                "yaw": yaw if yaw < _FULL_CIRCLE_DEGREES else 0.0,
                "esc_temperature": shift(
                    sample.esc_temperature, _TEMPERATURE_NOISE, *_ESC_TEMPERATURE_LIMITS
                ),
                "mcu_temperature": shift(
                    sample.mcu_temperature, _TEMPERATURE_NOISE, *_MCU_TEMPERATURE_LIMITS
                ),
            }
        )

    def _update_gps(self) -> None:
        """Acquire satellites while flying and drift the fix along the heading."""
        sample = self._sample
        satellites = sample.satellites
        if satellites < _MAXIMUM_SATELLITES and self._random.random() < _SATELLITE_GAIN_PROBABILITY:
            satellites += 1

        gps_fix = satellites >= MINIMUM_SATELLITES_FOR_FIX
        latitude = sample.latitude
        longitude = sample.longitude

        if gps_fix and latitude == 0.0 and longitude == 0.0:
            latitude = _HOME_LATITUDE + self._random_shift(0.0, _HOME_JITTER_DEGREES)
            longitude = _HOME_LONGITUDE + self._random_shift(0.0, _HOME_JITTER_DEGREES)
        elif gps_fix:
            heading_radians = sample.yaw * _DEGREES_TO_RADIANS
            drift = sample.speed * _DRIFT_DEGREES_PER_SPEED
            latitude = _clamp(latitude + drift * math.cos(heading_radians), -90.0, 90.0)
            longitude = _clamp(longitude + drift * math.sin(heading_radians), -180.0, 180.0)

        self._sample = sample.model_copy(
            update={
                "satellites": satellites,
                "gps_fix": gps_fix,
                "latitude": latitude,
                "longitude": longitude,
            }
        )

    def _land(self) -> None:
        self._is_flying = False
        self._flight_start_time = None
        self._sample = self._sample.grounded()

    def _random_shift(
        self,
        value: float,
        intensity: float,
        lower: float = -math.inf,
        upper: float = math.inf,
    ) -> float:
        """Perturb ``value`` by symmetric noise of at most ``intensity``, then clamp."""
        noise = (self._random.random() - 0.5) * 2.0 * intensity
        return _clamp(value + noise, lower, upper)
