"""Synchronous publish/subscribe for link and recorder state changes.

Collaborators subscribe to connection, telemetry and emergency
transitions instead of polling the session's flags on timers.
"""

from __future__ import annotations

import logging
import threading
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Events published by the controller core."""

    CONNECTION_CHANGED = "connection_changed"
    TELEMETRY_SAMPLED = "telemetry_sampled"
    EMERGENCY_CHANGED = "emergency_changed"
    FLIGHT_LOG_SAVED = "flight_log_saved"


class EventBus:
    """Thread-safe event bus that dispatches on the emitting thread.

    A failing subscriber is logged and skipped so one broken screen
    cannot stop telemetry from reaching the others.
    """

    def __init__(self) -> None:
        self._subscribers: dict[EventType, list[Callable[[Any], None]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: EventType, callback: Callable[[Any], None]) -> None:
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)

    def unsubscribe(self, event_type: EventType, callback: Callable[[Any], None]) -> None:
        with self._lock:
            try:
                self._subscribers.get(event_type, []).remove(callback)
            except ValueError:
                logger.debug("Callback was not subscribed to %s", event_type)

    def has_subscribers(self, event_type: EventType) -> bool:
        """Return True if any callbacks are registered for this event type."""
        with self._lock:
            return bool(self._subscribers.get(event_type))

    def emit(self, event_type: EventType, data: Any = None) -> None:
        """Emit an event to every subscriber of ``event_type``.

        The callback list is copied under the lock and invoked outside it,
        so callbacks may subscribe or unsubscribe without deadlocking.
        """
        with self._lock:
            callbacks = list(self._subscribers.get(event_type, []))
        for callback in callbacks:
            try:
                callback(data)
            except Exception:
                logger.exception("Subscriber failed handling %s", event_type)
