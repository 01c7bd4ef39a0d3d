"""Success-or-error return type for use cases."""

from __future__ import annotations

from typing import Generic, Optional, TypeVar

from orgkit.core.errors import DomainError

T = TypeVar("T")


class Result(Generic[T]):
    """Holds either a value or a ``DomainError``, never both."""

    __slots__ = ("_value", "_error")

    def __init__(self, value: Optional[T] = None, error: Optional[DomainError] = None):
        self._value = value
        self._error = error

    @classmethod
    def ok(cls, value: T = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, error: DomainError) -> "Result[T]":
        return cls(error=error)

    @property
    def is_success(self) -> bool:
        return self._error is None

    @property
    def is_failure(self) -> bool:
        return self._error is not None

    @property
    def value(self) -> T:
        if self._error is not None:
            raise ValueError(f"Cannot read value of a failed result: {self._error!r}")
        return self._value

    @property
    def error(self) -> DomainError:
        if self._error is None:
            raise ValueError("Cannot read error of a successful result")
        return self._error

    def __repr__(self) -> str:
        if self.is_success:
            return f"Result.ok({self._value!r})"
        return f"Result.fail({self._error!r})"
