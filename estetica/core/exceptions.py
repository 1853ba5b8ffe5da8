"""Custom application exceptions."""

from typing import Any

from estetica.scheduling.results import ErrorKind, SchedulingError


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class SchedulingException(AppException):
    """A scheduling operation returned an error result."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        """Initialize with the status code mapped from the error kind."""
        super().__init__(message, status_code=STATUS_BY_KIND.get(kind, 400))
        self.kind = kind
        self.details = details or {}

    @classmethod
    def from_error(cls, error: SchedulingError) -> "SchedulingException":
        """Build the exception for a failed result's error."""
        return cls(error.kind, error.message, error.details)


# HTTP status per scheduling error kind
STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_INTERVAL: 422,
    ErrorKind.POLICY_VIOLATION: 422,
    ErrorKind.SCHEDULE_CONFLICT: 409,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.ALREADY_CANCELLED: 409,
    ErrorKind.ALREADY_COMPLETED: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.PERSISTENCE_FAILURE: 500,
}
