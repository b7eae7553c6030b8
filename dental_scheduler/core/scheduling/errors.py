"""
Scheduling error taxonomy.

Every failure surfaced by the availability and booking services is one of
four kinds:

- ValidationError: malformed or missing input, raised before any I/O
- ResourceNotFound: tenant, appointment, practitioner or patient does not
  resolve, or a cancel/reschedule target left the expected status
- ConflictError: the proposed interval overlaps an active appointment
- InternalError: datastore failure, timeout, unreachable extractor
"""

from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError


class SchedulingError(Exception):
    """Base class for scheduling errors."""

    code = "scheduling_error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        """Problem-style payload for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(SchedulingError):
    """Raised when a request field is missing or malformed."""

    code = "validation_error"

    def __init__(
        self,
        message: str,
        field_errors: Optional[dict[str, str]] = None,
    ):
        self.field_errors = field_errors or {}
        super().__init__(message, {"fields": self.field_errors})

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError) -> "ValidationError":
        """Convert a pydantic validation failure."""
        field_errors = {}
        for error in exc.errors():
            field = ".".join(str(part) for part in error["loc"]) or "request"
            field_errors[field] = error["msg"]
        return cls("Invalid request", field_errors)


class ResourceNotFound(SchedulingError):
    """Raised when a referenced record does not exist or is not in a usable state."""

    code = "not_found"

    def __init__(self, resource: str, identifier: Any, message: Optional[str] = None):
        self.resource = resource
        self.identifier = str(identifier)
        super().__init__(
            message or f"{resource} '{identifier}' not found",
            {"resource": resource, "id": self.identifier},
        )


class ConflictError(SchedulingError):
    """Raised when a proposed interval overlaps an active appointment."""

    code = "conflict"

    def __init__(self, conflicts: list, message: str = "Time slot is no longer available"):
        self.conflicts = conflicts
        super().__init__(
            message,
            {"conflicts": [conflict.to_dict() for conflict in conflicts]},
        )


class InternalError(SchedulingError):
    """Raised on downstream failures. Detail stays server-side."""

    code = "internal_error"

    def __init__(self, message: str = "Internal error", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause

    def to_dict(self) -> dict:
        return {"error": self.code, "message": "The request could not be completed"}
