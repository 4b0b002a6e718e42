"""Root logger setup.

``setup_logging`` installs one console handler and, when configured, a
JSON-lines file handler. It is a no-op on repeat calls unless forced.
"""

import logging
import sys
from pathlib import Path
from typing import TextIO

from drone_controller.logging.config import LogFormat, LoggingConfig, get_logging_config
from drone_controller.logging.formatters import HumanFormatter, JSONFormatter

_configured = False

# Third-party loggers that are too chatty at INFO.
_QUIET_LOGGERS: tuple[str, ...] = ("asyncio",)


def _json_formatter(config: LoggingConfig) -> JSONFormatter:
    return JSONFormatter(
        service_name=config.service_name,
        include_timestamp=config.include_timestamp,
        include_location=config.include_location,
    )


def _console_handler(config: LoggingConfig, stream: TextIO | None) -> logging.Handler:
    handler = logging.StreamHandler(stream or sys.stdout)
    if config.log_format == LogFormat.JSON:
        handler.setFormatter(_json_formatter(config))
    else:
        # Colors only on the real terminal, never in captured streams
        handler.setFormatter(HumanFormatter(use_colors=stream is None))
    return handler


def _file_handler(config: LoggingConfig, log_file: str) -> logging.Handler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(_json_formatter(config))
    return handler


def setup_logging(
    config: LoggingConfig | None = None,
    stream: TextIO | None = None,
    *,
    force: bool = False,
) -> None:
    """Configure the root logger.

    Args:
        config: Logging options; read from the environment when omitted.
        stream: Console stream; stdout when omitted.
        force: Replace an existing configuration.
    """
    global _configured
    if _configured and not force:
        return

    config = config or get_logging_config()

    root_logger = logging.getLogger()
    _remove_handlers(root_logger)
    root_logger.setLevel(config.log_level.value)

    root_logger.addHandler(_console_handler(config, stream))
    if config.log_file:
        root_logger.addHandler(_file_handler(config, config.log_file))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return the logger for ``name``, normally the caller's ``__name__``."""
    return logging.getLogger(name)


def reset_logging() -> None:
    """Drop every root handler and forget the cached configuration. Used by tests."""
    global _configured
    _configured = False
    _remove_handlers(logging.getLogger())
    get_logging_config.cache_clear()


def _remove_handlers(root_logger: logging.Logger) -> None:
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        if isinstance(handler, logging.FileHandler):
            handler.close()
