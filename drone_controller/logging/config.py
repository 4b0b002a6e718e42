"""Logging configuration loaded from the environment."""

from enum import StrEnum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogLevel(StrEnum):
    """Valid log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(StrEnum):
    """Console output format."""

    JSON = "json"
    HUMAN = "human"


class LoggingConfig(BaseSettings):
    """Logging options.

    The console defaults to the human format. Setting ``log_file`` adds a
    JSON-lines file next to it, which is what post-flight tooling reads.

    Attributes:
        log_level: Minimum level emitted by the root logger.
        log_format: Console format.
        log_file: Optional JSON-lines file path.
        service_name: Stamped on every JSON record.
        include_timestamp: Emit a timestamp in JSON records.
        include_location: Emit module, function and line in JSON records.
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
    )

    log_level: LogLevel = Field(default=LogLevel.INFO)
    log_format: LogFormat = Field(default=LogFormat.HUMAN)
    log_file: str | None = Field(default=None)
    service_name: str = Field(default="drone-controller")
    include_timestamp: bool = Field(default=True)
    include_location: bool = Field(default=False)


@lru_cache
def get_logging_config() -> LoggingConfig:
    """Return the cached environment-derived logging configuration."""
    return LoggingConfig()
