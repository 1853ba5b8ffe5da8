"""Result values returned by the scheduling core.

Scheduling operations report failures as values rather than raising: callers
inspect ``result.ok`` and read ``result.error.kind``. Side effects that fail
after a successful state change are reported as ``warnings`` on an otherwise
successful result.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Error taxonomy of the scheduling core."""

    INVALID_INTERVAL = "INVALID_INTERVAL"
    POLICY_VIOLATION = "POLICY_VIOLATION"
    SCHEDULE_CONFLICT = "SCHEDULE_CONFLICT"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    ALREADY_CANCELLED = "ALREADY_CANCELLED"
    ALREADY_COMPLETED = "ALREADY_COMPLETED"
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    INVALID_REQUEST = "INVALID_REQUEST"
    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"


@dataclass(frozen=True)
class SchedulingError:
    """A failed scheduling decision."""

    kind: ErrorKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a scheduling operation."""

    value: T | None = None
    error: SchedulingError | None = None
    warnings: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        """Check whether the operation succeeded."""
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None, warnings: list[str] | tuple[str, ...] = ()) -> "Result[T]":
        """Build a successful result."""
        return cls(value=value, warnings=tuple(warnings))

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, **details: Any) -> "Result[T]":
        """Build a failed result."""
        return cls(error=SchedulingError(kind=kind, message=message, details=details))

    def with_warnings(self, warnings: list[str]) -> "Result[T]":
        """Return a copy with extra warnings appended."""
        if not warnings:
            return self
        return Result(value=self.value, error=self.error, warnings=self.warnings + tuple(warnings))

    def propagate(self) -> "Result[Any]":
        """Re-wrap a failure so it can be returned with a different value type."""
        return Result(error=self.error, warnings=self.warnings)


# Result of a service operation: value, error and collaborator warnings
OperationResult = Result
