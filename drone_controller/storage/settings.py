"""Persisted user settings: vehicle endpoint, PID gains, safety thresholds.

The record is stored as one JSON object using the app's camelCase keys.
Missing fields are filled from defaults on read; invalid records are
rejected on save.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from drone_controller.exceptions import ConfigurationError, StorageError
from drone_controller.link.models import ConnectionConfig, PIDGains, validate_ipv4_host

if TYPE_CHECKING:
    from drone_controller.storage.store import KeyValueStore

logger = logging.getLogger(__name__)

SETTINGS_KEY = "@DroneController:settings"


class Settings(BaseModel):
    """User-editable controller settings.

    PID gains are kept as the strings the user typed; they must parse
    to non-negative finite floats.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        str_strip_whitespace=True,
    )

    # Vehicle endpoint
    ip_address: str = Field(default="192.168.4.1")
    port: int = Field(default=8888, ge=0, le=65535)

    # PID gains
    p_gain: str = Field(default="1.0")
    i_gain: str = Field(default="0.0")
    d_gain: str = Field(default="0.0")

    # Feature toggles
    auto_connect: bool = Field(default=False)
    haptic_feedback: bool = Field(default=True)
    return_to_home_enabled: bool = Field(default=True)

    # Safety thresholds
    low_battery_alert_threshold: int = Field(default=20, ge=0, le=100)
    critical_battery_alert_threshold: int = Field(default=10, ge=0, le=100)
    max_altitude: float = Field(default=100.0, gt=0.0)

    @field_validator("ip_address")
    @classmethod
    def validate_ip_address(cls, value: str) -> str:
        """Validate the address with the same rules as a connect attempt."""
        return validate_ipv4_host(value)

    @field_validator("p_gain", "i_gain", "d_gain", mode="before")
    @classmethod
    def validate_gain(cls, value: Any) -> str:
        """Accept numbers or numeric strings that parse to a gain >= 0."""
        text = str(value).strip() if isinstance(value, int | float | str) else value
        try:
            gain = float(text)
        except (TypeError, ValueError) as error:
            error_message = f"gain must be numeric, got {value!r}"
            raise ValueError(error_message) from error
        if not math.isfinite(gain) or gain < 0.0:
            error_message = f"gain must be a finite number >= 0, got {value!r}"
            raise ValueError(error_message)
        return text

    @model_validator(mode="after")
    def validate_battery_thresholds(self) -> Self:
        """The critical alert must fire strictly below the low-battery alert."""
        if self.critical_battery_alert_threshold >= self.low_battery_alert_threshold:
            error_message = (
                f"critical_battery_alert_threshold ({self.critical_battery_alert_threshold}) "
                f"must be below low_battery_alert_threshold ({self.low_battery_alert_threshold})"
            )
            raise ValueError(error_message)
        return self

    def connection_config(self) -> ConnectionConfig:
        return ConnectionConfig(host=self.ip_address, port=self.port)

    def pid_gains(self) -> PIDGains:
        return PIDGains(p=float(self.p_gain), i=float(self.i_gain), d=float(self.d_gain))


def _validate_settings(values: Mapping[str, Any]) -> Settings:
    try:
        return Settings.model_validate(dict(values))
    except ValidationError as error:
        raise ConfigurationError.from_validation_error(error, subject="settings") from error


class SettingsStore:
    """Reads and writes the settings record in a key-value store."""

    def __init__(self, store: KeyValueStore) -> None:
        """Initialize the settings store.

        Args:
            store: Key-value persistence backend.
        """
        self._store = store

    def get_settings(self) -> Settings:
        """Return persisted settings merged over defaults.

        Unreadable or invalid records fall back to defaults.
        """
        try:
            raw = self._store.get_item(SETTINGS_KEY)
        except StorageError:
            logger.warning("Settings unreadable, using defaults", exc_info=True)
            return Settings()

        if raw is None:
            return Settings()

        try:
            stored = json.loads(raw)
            if not isinstance(stored, dict):
                raise ValueError("settings record is not a JSON object")
            merged = Settings().model_dump(by_alias=True) | stored
            return Settings.model_validate(merged)
        except ValueError:
            logger.warning("Stored settings invalid, using defaults", exc_info=True)
            return Settings()

    def save_settings(self, settings: Settings | Mapping[str, Any]) -> Settings:
        """Validate and persist a full settings record.

        Args:
            settings: Complete record; mapping fields absent from it take defaults.

        Returns:
            The persisted settings.

        Raises:
            ConfigurationError: If any field or threshold relation is invalid.
            StorageError: If the record cannot be written.
        """
        if isinstance(settings, Settings):
            settings = settings.model_dump()
        settings = _validate_settings(settings)

        self._store.set_item(SETTINGS_KEY, settings.model_dump_json(by_alias=True))
        logger.info(
            "Settings saved (endpoint=%s:%d, auto_connect=%s)",
            settings.ip_address,
            settings.port,
            settings.auto_connect,
        )
        return settings

    def update_settings(self, **changes: Any) -> Settings:
        """Merge ``changes`` into the current full record and save it.

        Raises:
            ConfigurationError: If the merged record is invalid.
            StorageError: If the record cannot be written.
        """
        merged = self.get_settings().model_dump() | changes
        return self.save_settings(merged)

    def clear_settings(self) -> None:
        """Remove the persisted record so defaults apply.

        Raises:
            StorageError: If the record cannot be removed.
        """
        self._store.remove_item(SETTINGS_KEY)
        logger.info("Settings cleared")

    def get_connection_config(self) -> ConnectionConfig:
        return self.get_settings().connection_config()
