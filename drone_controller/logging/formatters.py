"""Console and file formatters.

Both formatters append the link session id, the ambient extra context and
any ``extra=`` fields passed at the call site. Controller exceptions
contribute their error code and context.
"""

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any, ClassVar

from drone_controller.exceptions import DroneControllerError
from drone_controller.logging.context import get_extra_context, get_session_id

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RESERVED_RECORD_ATTRIBUTES: frozenset[str] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}

_LOGGER_NAME_WIDTH = 30


def _call_site_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RESERVED_RECORD_ATTRIBUTES and not key.startswith("_")
    }


def _context_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Merge session id, ambient context and call-site extras, in that order."""
    fields: dict[str, Any] = {}
    current_session = get_session_id()
    if current_session:
        fields["session_id"] = current_session
    fields.update(get_extra_context())
    fields.update(_call_site_fields(record))
    return fields


def _exception_fields(record: logging.LogRecord) -> dict[str, Any] | None:
    if not record.exc_info or record.exc_info[0] is None:
        return None
    exception_type, exception, exception_traceback = record.exc_info
    fields: dict[str, Any] = {
        "type": exception_type.__name__,
        "message": str(exception),
        "traceback": traceback.format_exception(exception_type, exception, exception_traceback),
    }
    if isinstance(exception, DroneControllerError):
        fields["error_code"] = exception.error_code
        fields["context"] = exception.context
    return fields


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log files and post-flight analysis."""

    def __init__(
        self,
        *,
        service_name: str = "drone-controller",
        include_timestamp: bool = True,
        include_location: bool = True,
    ) -> None:
        super().__init__()
        self._service_name = service_name
        self._include_timestamp = include_timestamp
        self._include_location = include_location

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {}
        if self._include_timestamp:
            entry["timestamp"] = datetime.fromtimestamp(record.created, UTC).isoformat(timespec="milliseconds")
        entry["level"] = record.levelname
        entry["logger"] = record.name
        entry["message"] = record.getMessage()
        entry["service"] = self._service_name

        if self._include_location:
            entry.update(module=record.module, function=record.funcName, line=record.lineno)

        entry.update(_context_fields(record))

        exception = _exception_fields(record)
        if exception is not None:
            entry["exception"] = exception

        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    """Single-line console output: ``time level [logger] message | key=value ...``."""

    LEVEL_COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET: ClassVar[str] = "\033[0m"

    def __init__(self, *, use_colors: bool = True) -> None:
        super().__init__()
        self._use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created)
        timestamp = f"{created:%H:%M:%S}.{int(record.msecs):03d}"

        level = f"{record.levelname:<8}"
        if self._use_colors:
            level = f"{self.LEVEL_COLORS.get(record.levelname, '')}{level}{self.RESET}"

        line = f"{timestamp} {level} [{_shorten(record.name)}] {record.getMessage()}"

        fields = _context_fields(record)
        if fields:
            line += " | " + " ".join(f"{key}={value}" for key, value in fields.items())

        if record.exc_info:
            line += "\n" + "".join(traceback.format_exception(*record.exc_info))
        return line


def _shorten(logger_name: str) -> str:
    """Keep the tail of long dotted logger names."""
    if len(logger_name) <= _LOGGER_NAME_WIDTH:
        return logger_name
    return "..." + logger_name[-(_LOGGER_NAME_WIDTH - 3) :]
