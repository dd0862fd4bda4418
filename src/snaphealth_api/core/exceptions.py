"""Custom exception classes for the API."""

from typing import Any


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int = 400, details: Any = None):
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class NotFoundError(APIError):
    """Resource not found."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            message=f"{resource} with id '{resource_id}' not found",
            status_code=404,
            details={"resource": resource, "id": resource_id},
        )


class ValidationError(APIError):
    """Validation error."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message=message, status_code=422, details=details)


class ConfigurationError(APIError):
    """A source is enabled but its credentials are missing."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(
            message=message,
            status_code=500,
            details={"missing": missing or []},
        )


class ImageExtractionError(Exception):
    """No conversion strategy produced image bytes."""

    def __init__(self, message: str, reasons: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.reasons = reasons or []


class AdmissionRejected(Exception):
    """Concurrent request ceiling reached."""

    def __init__(self, active: int, limit: int):
        super().__init__(f"Too many concurrent analyses ({active}/{limit})")
        self.active = active
        self.limit = limit
