"""Drone controller exception hierarchy.

Architecture:
    DroneControllerError (base)
    ├── ConfigurationError      invalid host/port/threshold/gain values
    ├── LinkConnectionError     transport open/handshake failure (also ConnectionError)
    ├── TransientSendFailure    one dropped outbound frame
    ├── StorageError            key-value store read/write failure
    └── NotFoundError           missing flight log

Usage:
    from drone_controller.exceptions import LinkConnectionError

    try:
        session.connect(ConnectionConfig(host="192.168.4.1", port=8888))
    except LinkConnectionError as error:
        logger.warning("Vehicle unreachable", extra={"error": error.to_log_dict()})
"""

from drone_controller.exceptions.base import DroneControllerError
from drone_controller.exceptions.link_errors import LinkConnectionError, TransientSendFailure
from drone_controller.exceptions.storage_errors import NotFoundError, StorageError
from drone_controller.exceptions.validation_errors import ConfigurationError

__all__ = [
    "ConfigurationError",
    "DroneControllerError",
    "LinkConnectionError",
    "NotFoundError",
    "StorageError",
    "TransientSendFailure",
]
