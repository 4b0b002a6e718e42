"""Root of the controller exception hierarchy.

Each subclass declares a stable ``error_code`` and is registered under it
when the class is defined, so a code read back from a log file or shown
in the UI can be mapped to its exception class.
"""

from typing import Any, ClassVar


class DroneControllerError(Exception):
    """Base class for every error the controller core raises on purpose.

    Attributes:
        message: Human-readable description, safe to show to the pilot.
        error_code: Stable machine-readable code.
        context: Structured details (endpoint, key, field) for logs.
    """

    error_code: ClassVar[str] = "INTERNAL_ERROR"

    _codes: ClassVar[dict[str, type["DroneControllerError"]]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        DroneControllerError._codes[cls.error_code] = cls

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = dict(context) if context else {}

    @classmethod
    def get_by_error_code(cls, error_code: str) -> type["DroneControllerError"] | None:
        """Return the subclass registered for ``error_code``, if any."""
        return cls._codes.get(error_code)

    def to_dict(self) -> dict[str, Any]:
        """Summary for display next to a failed action."""
        return {"error_code": self.error_code, "message": self.message, "context": self.context}

    def to_log_dict(self) -> dict[str, Any]:
        """Fields for ``logger.*(..., extra={"error": error.to_log_dict()})``."""
        return self.to_dict() | {"exception_type": type(self).__name__}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        return f"{self.message} (context: {self.context})"

    def __repr__(self) -> str:
        return f"{type(self).__name__}(message={self.message!r}, error_code={self.error_code!r}, context={self.context!r})"
