"""Controller runtime configuration using Pydantic BaseSettings.

Runtime knobs (timer periods, storage location, simulator switch) are
loaded from environment variables. User-editable settings such as the
vehicle address and PID gains live in the persisted settings record,
see ``drone_controller.storage.settings``.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ControllerSettings(BaseSettings):
    """Controller settings loaded from environment variables.

    Attributes:
        storage_path: JSON file backing the key-value store.
        use_simulator: Drive a simulated vehicle instead of a UDP link.
        simulator_seed: Random seed for the simulated vehicle.
        telemetry_interval_seconds: Telemetry sampling period.
        liveness_interval_seconds: Link liveness check period.
        connect_timeout_seconds: Bound on transport open plus handshake.
        emergency_cooldown_seconds: How long an emergency stop stays latched.
        telemetry_timeout_seconds: Declare the link lost after this long
            without an inbound frame. Disabled when unset.
        main_loop_interval_seconds: Application loop period.
        log_level: Logging level.
    """

    model_config = SettingsConfigDict(
        env_prefix="DRONE_",
        case_sensitive=False,
        extra="ignore",
        str_strip_whitespace=True,
    )

    # Persistence
    storage_path: str = Field(default="drone_controller.json", min_length=1)

    # Vehicle link
    use_simulator: bool = Field(default=True)
    simulator_seed: int | None = Field(default=None)
    connect_timeout_seconds: float = Field(default=3.0, gt=0.0, le=30.0)
    telemetry_timeout_seconds: float | None = Field(default=None, gt=0.0)

    # Timers
    telemetry_interval_seconds: float = Field(default=0.5, gt=0.0, le=10.0)
    liveness_interval_seconds: float = Field(default=1.0, gt=0.0, le=30.0)
    emergency_cooldown_seconds: float = Field(default=5.0, ge=0.0, le=60.0)
    main_loop_interval_seconds: float = Field(default=0.1, gt=0.0, le=1.0)

    # Logging
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate log level is one of the allowed values."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in allowed:
            error_message = f"log_level must be one of {allowed}, got '{value}'"
            raise ValueError(error_message)
        return upper_value


@lru_cache
def get_controller_settings() -> ControllerSettings:
    """Get cached controller settings instance.

    Returns:
        Cached ControllerSettings instance.
    """
    return ControllerSettings()
