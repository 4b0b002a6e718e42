"""Controller application entry point.

Wires up the controller core and runs the main event loop: key-value
store, settings, link session over a simulated or UDP transport, flight
recorder, log archive and PID bridge.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import time
from enum import StrEnum
from typing import TYPE_CHECKING

from drone_controller.config import get_controller_settings
from drone_controller.events import EventBus, EventType
from drone_controller.exceptions import LinkConnectionError
from drone_controller.link.session import LinkSession
from drone_controller.link.sticks import StickMixer
from drone_controller.link.transport import SimulatedTransport, UdpTransport
from drone_controller.logging import LoggingConfig, setup_logging
from drone_controller.pid.bridge import PidConfigurationBridge
from drone_controller.recorder.recorder import FlightRecorder
from drone_controller.storage.archive import LogArchive
from drone_controller.storage.settings import SettingsStore
from drone_controller.storage.store import JsonFileKeyValueStore
from drone_controller.telemetry.simulator import TelemetrySimulator

if TYPE_CHECKING:
    from collections.abc import Callable

    from drone_controller.config import ControllerSettings
    from drone_controller.link.transport import Transport
    from drone_controller.storage.store import KeyValueStore
    from drone_controller.telemetry.models import TelemetrySample

logger = logging.getLogger(__name__)


class BatteryAlertLevel(StrEnum):
    """Battery alert severity derived from the user's thresholds."""

    NORMAL = "normal"
    LOW = "low"
    CRITICAL = "critical"


class ControllerApplication:
    """Controller application that owns one instance of every core component.

    The UI layer talks to the exposed components; this class only drives
    the periodic link work and reacts to bus events.
    """

    def __init__(
        self,
        settings: ControllerSettings,
        *,
        store: KeyValueStore | None = None,
        transport: Transport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the application with all components.

        Args:
            settings: Controller runtime configuration.
            store: Key-value backend; defaults to a JSON file at ``settings.storage_path``.
            transport: Vehicle transport; defaults per ``settings.use_simulator``.
            clock: Monotonic clock shared by the session and simulated vehicle.
        """
        self._settings = settings
        self._running = False
        self._battery_alert = BatteryAlertLevel.NORMAL

        self._store = store if store is not None else JsonFileKeyValueStore(settings.storage_path)
        self._event_bus = EventBus()
        self._settings_store = SettingsStore(self._store)
        self._archive = LogArchive(self._store)

        if transport is None:
            transport = self._build_transport(settings, clock=clock)
        self._session = LinkSession(
            transport,
            self._settings_store,
            settings,
            event_bus=self._event_bus,
            clock=clock,
        )
        self._recorder = FlightRecorder(self._session, self._archive, event_bus=self._event_bus)
        self._pid_bridge = PidConfigurationBridge(self._session, self._settings_store)
        self._sticks = StickMixer()

        self._event_bus.subscribe(EventType.TELEMETRY_SAMPLED, self._check_battery)
        self._event_bus.subscribe(EventType.CONNECTION_CHANGED, self._log_connection_change)

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def session(self) -> LinkSession:
        return self._session

    @property
    def settings_store(self) -> SettingsStore:
        return self._settings_store

    @property
    def archive(self) -> LogArchive:
        return self._archive

    @property
    def recorder(self) -> FlightRecorder:
        return self._recorder

    @property
    def pid_bridge(self) -> PidConfigurationBridge:
        return self._pid_bridge

    @property
    def sticks(self) -> StickMixer:
        return self._sticks

    @property
    def battery_alert(self) -> BatteryAlertLevel:
        return self._battery_alert

    async def run(self) -> None:
        """Run the main loop until ``stop`` is called or the task is cancelled.

        Connects first when the persisted settings ask for auto-connect;
        a failed auto-connect is logged and the loop still starts.
        """
        self._running = True
        logger.info("Starting controller application")

        self._auto_connect()

        try:
            while self._running:
                self._session.tick()
                await asyncio.sleep(self._settings.main_loop_interval_seconds)
        except asyncio.CancelledError:
            logger.info("Controller application cancelled")
        finally:
            self._shutdown()

    def stop(self) -> None:
        """Signal the main loop to stop."""
        logger.info("Stop signal received")
        self._running = False

    def _auto_connect(self) -> None:
        if not self._settings_store.get_settings().auto_connect:
            return
        logger.info("Auto-connect enabled, connecting to persisted endpoint")
        try:
            self._session.connect()
        except LinkConnectionError as error:
            logger.warning("Auto-connect failed", extra={"error": error.to_log_dict()})

    def _shutdown(self) -> None:
        logger.info("Shutting down controller application")
        if self._recorder.is_recording():
            try:
                self._recorder.stop_logging()
            except Exception:
                logger.exception("Could not save flight log in progress")
        self._session.disconnect()
        logger.info("Controller application shut down complete")

    def _check_battery(self, sample: TelemetrySample) -> None:
        """Log once each time the battery crosses into a worse alert level."""
        settings = self._settings_store.get_settings()
        percentage = sample.battery_percentage

        if percentage <= settings.critical_battery_alert_threshold:
            level = BatteryAlertLevel.CRITICAL
        elif percentage <= settings.low_battery_alert_threshold:
            level = BatteryAlertLevel.LOW
        else:
            level = BatteryAlertLevel.NORMAL

        if level == self._battery_alert:
            return
        if level != BatteryAlertLevel.NORMAL:
            logger.warning("Battery %s: %.0f%%", level, percentage)
        self._battery_alert = level

    def _log_connection_change(self, event: dict[str, object]) -> None:
        logger.debug("Connection changed: %s", event)

    @staticmethod
    def _build_transport(settings: ControllerSettings, *, clock: Callable[[], float]) -> Transport:
        if not settings.use_simulator:
            return UdpTransport()
        return SimulatedTransport(
            TelemetrySimulator(seed=settings.simulator_seed),
            clock=clock,
            emergency_cooldown_seconds=settings.emergency_cooldown_seconds,
        )


async def run_controller(settings: ControllerSettings) -> None:
    """Create and run the application with signal handling for graceful shutdown.

    Args:
        settings: Controller runtime configuration.
    """
    application = ControllerApplication(settings)

    loop = asyncio.get_running_loop()

    def signal_handler() -> None:
        logger.info("Received shutdown signal")
        application.stop()

    for signal_name in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signal_name, signal_handler)

    await application.run()


def main() -> None:
    """CLI entry point: load settings, configure logging and run the loop."""
    settings = get_controller_settings()
    setup_logging(LoggingConfig(log_level=settings.log_level))

    logger.info(
        "Starting drone controller (simulator=%s, storage=%s)",
        settings.use_simulator,
        settings.storage_path,
    )

    asyncio.run(run_controller(settings))


if __name__ == "__main__":
    main()
