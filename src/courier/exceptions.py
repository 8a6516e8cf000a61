"""Courier exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from CourierError for easy catching.

Delivery-time HTTP and transport problems are never raised: the dispatcher
classifies them into outcomes. These exceptions cover registration-time
validation, lookups and store bookkeeping.
"""

from __future__ import annotations


class CourierError(Exception):
    """Base exception for all Courier errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "courier_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(CourierError):
    """Invalid input provided.

    Raised at registration time for configuration failures such as a
    malformed target URL or an empty event type list, so they never
    surface as delivery-time errors.

    Attributes:
        field: The field that failed validation.
        message: Description of the validation failure.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(CourierError):
    """Resource not found.

    Attributes:
        resource_type: Type of resource (e.g., "subscription", "event").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class InvalidStateError(CourierError):
    """Operation conflicts with the current state of a resource.

    Raised, for example, when an event id is re-published with a
    different type or payload.
    """

    code: str = "invalid_state"


class StorageError(CourierError):
    """Store operation failed."""

    code: str = "storage_error"


class DuplicateAttemptError(StorageError):
    """An attempt record with the same (job_id, attempt_number) already exists.

    Attributes:
        job_id: Job the record belongs to.
        attempt_number: Attempt number that was already logged.
    """

    code: str = "duplicate_attempt"

    def __init__(self, job_id: str, attempt_number: int) -> None:
        self.job_id = job_id
        self.attempt_number = attempt_number
        super().__init__(f"attempt {attempt_number} already logged for job {job_id}")


class ConfigurationError(CourierError):
    """Configuration error.

    Raised when required configuration is missing or invalid.
    """

    code: str = "configuration_error"
