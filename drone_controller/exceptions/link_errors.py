"""Vehicle link exceptions."""

from typing import Any, ClassVar

from drone_controller.exceptions.base import DroneControllerError


class LinkConnectionError(DroneControllerError, ConnectionError):
    """Transport open, bind or handshake failed or timed out.

    Also a builtin ``ConnectionError`` so callers that only know the
    standard library hierarchy can still catch it.
    """

    error_code: ClassVar[str] = "CONNECTION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        host: str | None = None,
        port: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize connection error with optional endpoint info.

        Args:
            message: Description of the connection failure.
            host: Vehicle host that could not be reached.
            port: Vehicle port that could not be reached.
            context: Additional context information.
        """
        context_dict = context or {}
        if host is not None:
            context_dict["host"] = host
        if port is not None:
            context_dict["port"] = port
        super().__init__(message, context=context_dict)


class TransientSendFailure(DroneControllerError):
    """A single outbound frame could not be sent.

    Raised by transports. The link session absorbs it and reports
    ``False`` to its caller; the next periodic frame supersedes the
    dropped one.
    """

    error_code: ClassVar[str] = "SEND_FAILURE"
