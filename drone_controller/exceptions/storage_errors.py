"""Persistence exceptions."""

from typing import Any, ClassVar

from drone_controller.exceptions.base import DroneControllerError


class StorageError(DroneControllerError):
    """Key-value store read or write failed.

    Callers treat a failed write as "nothing changed" and a failed read
    as "fall back to defaults".
    """

    error_code: ClassVar[str] = "STORAGE_ERROR"

    def __init__(self, message: str, *, key: str | None = None, context: dict[str, Any] | None = None) -> None:
        merged = dict(context or {})
        if key is not None:
            merged["key"] = key
        super().__init__(message, context=merged)


class NotFoundError(DroneControllerError):
    """A stored record with the given id does not exist."""

    error_code: ClassVar[str] = "NOT_FOUND"

    def __init__(self, resource_type: str, resource_id: str, message: str | None = None) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(
            message or f"{resource_type} {resource_id} not found",
            context={"resource_type": resource_type, "resource_id": resource_id},
        )
