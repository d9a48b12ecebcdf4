"""
Explicit success/failure values returned by store operations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Generic, TypeVar, Union

from .exceptions import ResultUnwrapError

T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful outcome wrapping ``value``."""

    value: T
    ok: ClassVar[bool] = True

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: Any) -> T:
        return self.value

    def map(self, fn: Callable[[T], U]) -> "Ok[U]":
        return Ok(fn(self.value))


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Failed outcome wrapping ``error``."""

    error: E
    ok: ClassVar[bool] = False

    def unwrap(self) -> Any:
        raise ResultUnwrapError(f"Called unwrap on Err({self.error!s})")

    def unwrap_or(self, default: U) -> U:
        return default

    def map(self, fn: Callable[[Any], Any]) -> "Err[E]":
        return self


Result = Union[Ok[T], Err[E]]


def is_result(value: Any) -> bool:
    """Return ``True`` when ``value`` is an :class:`Ok` or :class:`Err`."""
    return isinstance(value, (Ok, Err))
