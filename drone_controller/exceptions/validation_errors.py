"""Configuration validation exceptions."""

from typing import Any, ClassVar

from drone_controller.exceptions.base import DroneControllerError


class ConfigurationError(DroneControllerError):
    """Configuration value is invalid.

    Raise at the settings-validation boundary, before a value can reach
    the vehicle link. Values are never silently coerced.
    """

    error_code: ClassVar[str] = "CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize configuration error with optional field info.

        Args:
            message: Description of the validation failure.
            field: Name of the field that failed validation.
            value: The invalid value.
            context: Additional context information.
        """
        context_dict = context or {}
        if field is not None:
            context_dict["field"] = field
        if value is not None:
            context_dict["value"] = value
        super().__init__(message, context=context_dict)

    @classmethod
    def from_validation_error(cls, error: Any, *, subject: str) -> "ConfigurationError":
        """Build a ConfigurationError from a pydantic ValidationError.

        Args:
            error: The pydantic ValidationError raised during validation.
            subject: What was being validated (e.g., "settings").

        Returns:
            ConfigurationError describing the first failing field.
        """
        details = error.errors()
        first = details[0] if details else {}
        location = first.get("loc", ())
        field = ".".join(str(part) for part in location) or None
        reason = first.get("msg", str(error))
        return cls(
            f"Invalid {subject}: {reason}",
            field=field,
            value=first.get("input"),
            context={"error_count": len(details)},
        )
