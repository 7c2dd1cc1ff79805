"""
core/result.py -- Functional outcome type for expected business failures.

Pattern: Result (a.k.a. Either). Validation, not-found, conflict and
unauthorized outcomes are ordinary return values, not exceptions. Exceptions
stay reserved for programmer errors and infrastructure faults (the store is
unreachable, a commit violates a constraint).

    result = repo.get(course_id)
    if result.is_failure:
        return result.error
    course = result.value

Reading .value on a failure is a programmer error and raises ResultError
immediately rather than handing back None.

Layer rule: core/ is the kernel. No imports from api/, auth/ or persistence/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"


class ResultError(RuntimeError):
    """Raised when a Result is read on the wrong branch."""


@dataclass(frozen=True)
class Error:
    """A machine-readable code plus a message safe to show to the caller.

    code follows the "<Area>.<Reason>" convention, e.g. "Auth.DuplicateUser"
    or "Email.InvalidFormat".
    """

    code: str
    message: str
    kind: ErrorKind = ErrorKind.VALIDATION

    @classmethod
    def validation(cls, code: str, message: str) -> Error:
        return cls(code, message, ErrorKind.VALIDATION)

    @classmethod
    def not_found(cls, code: str, message: str) -> Error:
        return cls(code, message, ErrorKind.NOT_FOUND)

    @classmethod
    def conflict(cls, code: str, message: str) -> Error:
        return cls(code, message, ErrorKind.CONFLICT)

    @classmethod
    def unauthorized(cls, code: str, message: str) -> Error:
        return cls(code, message, ErrorKind.UNAUTHORIZED)

    @classmethod
    def forbidden(cls, code: str, message: str) -> Error:
        return cls(code, message, ErrorKind.FORBIDDEN)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class Result(Generic[T]):
    """Either a success carrying a value or a failure carrying an Error.

    Use the success() / failure() constructors. A success may legitimately
    carry None (e.g. an operation with no payload), so the branch is tracked
    explicitly rather than inferred from the value.
    """

    __slots__ = ("_value", "_error", "_ok")

    def __init__(self, value: T | None = None, error: Error | None = None, *, ok: bool) -> None:
        if ok and error is not None:
            raise ValueError("A successful result cannot carry an error.")
        if not ok and error is None:
            raise ValueError("A failed result must carry an error.")
        self._ok = ok
        self._value = value
        self._error = error

    @classmethod
    def success(cls, value: T | None = None) -> Result[T]:
        return cls(value, ok=True)

    @classmethod
    def failure(cls, error: Error) -> Result[T]:
        return cls(error=error, ok=False)

    @property
    def is_success(self) -> bool:
        return self._ok

    @property
    def is_failure(self) -> bool:
        return not self._ok

    @property
    def value(self) -> T:
        if not self._ok:
            raise ResultError(f"Cannot read the value of a failed result ({self._error}).")
        return self._value  # type: ignore[return-value]

    @property
    def error(self) -> Error:
        if self._ok:
            raise ResultError("Cannot read the error of a successful result.")
        return self._error  # type: ignore[return-value]

    def __repr__(self) -> str:
        if self._ok:
            return f"Result.success({self._value!r})"
        return f"Result.failure({self._error!r})"
