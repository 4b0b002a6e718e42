"""Flight recorder data models."""

from enum import StrEnum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from drone_controller.telemetry.models import TelemetrySample


class RecorderState(StrEnum):
    """Flight recorder state."""

    IDLE = "idle"
    RECORDING = "recording"


class RecordedSample(BaseModel):
    """Telemetry sample stamped with wall-clock time in epoch milliseconds."""

    model_config = ConfigDict(frozen=True)

    timestamp_ms: int = Field(ge=0)
    sample: TelemetrySample


class FlightLog(BaseModel):
    """Summary of one recorded flight.

    Serialized with the app's camelCase keys. ``dataPoints`` is accepted
    as a legacy name for ``sampleCount``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    name: str
    start_time: int = Field(ge=0, alias="startTime")
    duration: int = Field(ge=0, description="Whole seconds")
    max_altitude: float = Field(ge=0.0, alias="maxAltitude")
    max_speed: float = Field(ge=0.0, alias="maxSpeed")
    avg_battery_percentage: float = Field(ge=0.0, le=100.0, alias="avgBatteryPercentage")
    distance: float = Field(ge=0.0, description="Metres")
    sample_count: int = Field(
        ge=0,
        validation_alias=AliasChoices("sampleCount", "dataPoints", "sample_count"),
        serialization_alias="sampleCount",
    )
