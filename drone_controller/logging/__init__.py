"""Structured logging for the drone controller.

Usage:
    from drone_controller.logging import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Link established", extra={"host": "192.168.4.1"})
"""

from drone_controller.logging.config import LoggingConfig
from drone_controller.logging.context import (
    bind_link_context,
    clear_context,
    generate_session_id,
    get_extra_context,
    get_session_id,
    set_extra_context,
    set_session_id,
)
from drone_controller.logging.formatters import HumanFormatter, JSONFormatter
from drone_controller.logging.logger import get_logger, reset_logging, setup_logging

__all__ = [
    "HumanFormatter",
    "JSONFormatter",
    "LoggingConfig",
    "bind_link_context",
    "clear_context",
    "generate_session_id",
    "get_extra_context",
    "get_logger",
    "get_session_id",
    "reset_logging",
    "set_extra_context",
    "set_session_id",
    "setup_logging",
]
