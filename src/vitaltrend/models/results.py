"""
Call Results

Explicit success/failure values returned by boundaries that are allowed to
degrade (text generation, chart rendering, record normalization). Callers
dispatch on the result type instead of unwinding exceptions.
"""

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass
class Success(Generic[T]):
    """A boundary call that produced a value."""
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass
class Failure:
    """A boundary call that did not produce a value."""
    reason: str
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return False


Result = Success[Any] | Failure
