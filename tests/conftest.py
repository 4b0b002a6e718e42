"""Shared test fixtures."""

import pytest

from drone_controller.config import get_controller_settings
from drone_controller.logging.config import get_logging_config


@pytest.fixture(autouse=True)
def _clear_environment(monkeypatch):
    """Clear environment variables that affect settings."""
    env_vars_to_clear = [
        "SERVICE_NAME",
        "LOG_LEVEL",
        "LOG_FORMAT",
        "LOG_FILE",
        "INCLUDE_TIMESTAMP",
        "INCLUDE_LOCATION",
        "DRONE_STORAGE_PATH",
        "DRONE_USE_SIMULATOR",
        "DRONE_SIMULATOR_SEED",
        "DRONE_CONNECT_TIMEOUT_SECONDS",
        "DRONE_TELEMETRY_TIMEOUT_SECONDS",
        "DRONE_TELEMETRY_INTERVAL_SECONDS",
        "DRONE_LIVENESS_INTERVAL_SECONDS",
        "DRONE_EMERGENCY_COOLDOWN_SECONDS",
        "DRONE_MAIN_LOOP_INTERVAL_SECONDS",
        "DRONE_LOG_LEVEL",
    ]
    for var in env_vars_to_clear:
        monkeypatch.delenv(var, raising=False)
    get_controller_settings.cache_clear()
    get_logging_config.cache_clear()
