from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, List, Optional, TypeVar

T = TypeVar("T")


# PUBLIC_INTERFACE
class ErrorKind(str, Enum):
    """
    Failure categories reported by the task service.

    - VALIDATION: caller input breaks a domain rule; fix the input and retry.
    - NOT_FOUND: the referenced task id does not exist.
    - STORAGE: the storage medium failed; nothing was retried.
    """

    VALIDATION = "ValidationError"
    NOT_FOUND = "NotFound"
    STORAGE = "StorageError"


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class TaskError:
    """A failed service call: its kind, a human readable message and optional details."""

    kind: ErrorKind
    message: str
    detail: List[Any] = field(default_factory=list)


class StorageError(Exception):
    """Raised by task stores when the underlying medium fails."""


class TaskOperationError(Exception):
    """Raised by Result.unwrap() on a failed result."""

    def __init__(self, error: TaskError) -> None:
        super().__init__(f"{error.kind.value}: {error.message}")
        self.error = error

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Outcome of a task service operation.

    Exactly one of value/error is meaningful: a successful result has
    error=None (value may legitimately be None, e.g. for delete).
    """

    value: Optional[T] = None
    error: Optional[TaskError] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, detail: Optional[List[Any]] = None) -> "Result[T]":
        return cls(error=TaskError(kind=kind, message=message, detail=list(detail or [])))

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return None if self.error is None else self.error.kind

    def unwrap(self) -> T:
        """Return the value, or raise TaskOperationError for a failed result."""
        if self.error is not None:
            raise TaskOperationError(self.error)
        return self.value  # type: ignore[return-value]
