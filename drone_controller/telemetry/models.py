"""Telemetry data models."""

from typing import Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

MINIMUM_SATELLITES_FOR_FIX: int = 4


class TelemetrySample(BaseModel):
    """One snapshot of vehicle sensor state."""

    model_config = ConfigDict(frozen=True)

    altitude: float = Field(default=0.0, ge=0.0)
    speed: float = Field(default=0.0, ge=0.0)
    battery_voltage: float = Field(default=11.1, ge=0.0)
    battery_percentage: float = Field(default=100.0, ge=0.0, le=100.0)
    pitch: float = Field(default=0.0, ge=-90.0, le=90.0)
    roll: float = Field(default=0.0, ge=-90.0, le=90.0)
    yaw: float = Field(default=0.0, ge=0.0, lt=360.0)
    esc_temperature: float = Field(default=32.0)
    mcu_temperature: float = Field(default=38.0)
    satellites: int = Field(default=0, ge=0)
    gps_fix: bool = Field(default=False)
    latitude: float = Field(default=0.0, ge=-90.0, le=90.0)
    longitude: float = Field(default=0.0, ge=-180.0, le=180.0)

    @model_validator(mode="after")
    def validate_gps_fix(self) -> Self:
        """A GPS fix is reported exactly when enough satellites are visible."""
        expected_fix = self.satellites >= MINIMUM_SATELLITES_FOR_FIX
        if self.gps_fix != expected_fix:
            error_message = (
                f"gps_fix must be {expected_fix} with {self.satellites} satellites "
                f"(fix requires >= {MINIMUM_SATELLITES_FOR_FIX})"
            )
            raise ValueError(error_message)
        return self

    def grounded(self) -> "TelemetrySample":
        """Return a copy with altitude and speed zeroed."""
        return self.model_copy(update={"altitude": 0.0, "speed": 0.0})
