"""Left-to-right function composition. Stateless, outside the reactive protocol.

Cells expose the same thing as a method, which reads well when stacking
derivations:

    label = count.pipe(
        lambda c: derive(c, lambda n, *_: n * 2),
        lambda c: derive(c, lambda n, *_: f"{n} items"),
    )
"""

from __future__ import annotations

from functools import reduce
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")


def pipe(value: Any, *fns: Callable[[Any], Any]) -> Any:
    """Feed value through fns, first to last. No fns returns value unchanged."""
    return reduce(lambda acc, fn: fn(acc), fns, value)


class Pipable(Generic[T]):
    """Wraps a plain value so it can be piped like a cell."""

    __slots__ = ("_value",)

    def __init__(self, value: T) -> None:
        self._value = value

    def pipe(self, *fns: Callable[[Any], Any]) -> Any:
        return pipe(self._value, *fns)

    def __repr__(self) -> str:
        return f"Pipable({self._value!r})"


def pipable_from(value: T) -> Pipable[T]:
    return Pipable(value)
