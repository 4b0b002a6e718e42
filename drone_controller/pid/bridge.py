"""PID configuration bridge.

Two copies of the gains exist: the persisted copy in the settings record
and the active copy applied to the connected vehicle. They change
independently; this bridge is the single place that moves values
between them and the operator.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from drone_controller.exceptions import ConfigurationError
from drone_controller.link.models import PIDGains

if TYPE_CHECKING:
    from drone_controller.link.session import LinkSession
    from drone_controller.storage.settings import SettingsStore

logger = logging.getLogger(__name__)


def _validate_gains(p: float, i: float, d: float) -> PIDGains:
    try:
        return PIDGains(p=p, i=i, d=d)
    except ValidationError as error:
        raise ConfigurationError.from_validation_error(error, subject="PID gains") from error


class PidConfigurationBridge:
    """Applies, saves and reconciles PID gains."""

    def __init__(self, session: LinkSession, settings_store: SettingsStore) -> None:
        self._session = session
        self._settings_store = settings_store

    def persisted(self) -> PIDGains:
        return self._settings_store.get_settings().pid_gains()

    def active(self) -> PIDGains | None:
        """Return the gains applied to the vehicle, or None when not connected."""
        return self._session.get_pid_parameters()

    def apply(self, p: float, i: float, d: float) -> bool:
        """Try gains on the vehicle without persisting them.

        Returns:
            True if the update frame was sent.

        Raises:
            ConfigurationError: If any gain is negative or not a number.
        """
        gains = _validate_gains(p, i, d)
        return self._session.send_pid_parameters(gains.p, gains.i, gains.d)

    def save(self, p: float, i: float, d: float) -> bool:
        """Persist gains and, when connected, push them to the vehicle.

        The settings record is rewritten in full with the new gains
        merged in, so other fields are preserved.

        Returns:
            True if the gains were also pushed to a connected vehicle.

        Raises:
            ConfigurationError: If any gain is negative or not a number.
            StorageError: If the settings record cannot be written.
        """
        gains = _validate_gains(p, i, d)
        self._settings_store.update_settings(
            p_gain=str(gains.p),
            i_gain=str(gains.i),
            d_gain=str(gains.d),
        )
        logger.info("PID gains saved: p=%s i=%s d=%s", gains.p, gains.i, gains.d)

        if not self._session.is_connected():
            return False
        return self._session.send_pid_parameters(gains.p, gains.i, gains.d)

    def push_persisted(self) -> bool:
        """Send the persisted gains to the connected vehicle."""
        gains = self.persisted()
        return self._session.send_pid_parameters(gains.p, gains.i, gains.d)

    def is_synchronized(self) -> bool:
        """Return True when connected and both copies hold the same gains."""
        active = self.active()
        return active is not None and active == self.persisted()
