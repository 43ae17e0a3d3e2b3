"""Mutable cells — a value, its subscribers, and a dirty flag.

Every write is a two-phase wave: first all invalidation callbacks run (the
cell is dirty while they do), then the value is committed and every value
callback runs with (value, previous). Derived cells rely on that order to
hold back recomputation until all of their sources have settled.

A cell may own an external resource through its lifecycle hook:

    def start(set, invalidate):
        timer = Ticker(on_tick=lambda t: set(t))
        timer.start()
        return timer.stop

    clock = Cell(0, start)

start() runs when the first subscriber arrives and the returned stop
action runs when the last one leaves.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Generic, Optional, TypeVar

from cellx._registry import (
    Invalidator,
    Run,
    SubscriberEntry,
    SubscriberRegistry,
    Subscription,
    handle_errors,
)
from cellx.equality import EqualityMode, should_notify
from cellx.pipe import pipe

T = TypeVar("T")

Stopper = Callable[[], None]
StartStop = Callable[[Callable[[T], T], Callable[[], None]], Optional[Stopper]]

logger = logging.getLogger("cellx.cell")


class Cell(Generic[T]):
    """A writable reactive value."""

    __slots__ = ("_value", "_dirty", "_subscribers", "_start", "_stop", "_skip_when_equal")

    def __init__(
        self,
        value: T = None,
        start: StartStop | None = None,
        *,
        skip_when_equal: EqualityMode | str = EqualityMode.PRIMITIVE,
    ) -> None:
        self._value = value
        self._dirty = False
        self._subscribers: SubscriberRegistry[T] = SubscriberRegistry()
        self._start = start
        self._stop: Stopper | None = None
        self._skip_when_equal = EqualityMode(skip_when_equal)

    def get(self) -> T:
        """The last committed value. Never blocks on dirtiness."""
        return self._value

    def is_dirty(self) -> bool:
        """True between invalidate() and the commit of the next value."""
        return self._dirty

    def invalidate(self) -> None:
        """Tell subscribers a new value is coming. No-op while already dirty."""
        handle_errors(self._invalidate())

    def _invalidate(self) -> list[Exception]:
        if self._dirty:
            return []
        self._dirty = True
        return self._subscribers.notify_invalidate()

    def set(self, value: T) -> T:
        """Commit value and notify. Returns the value the cell now holds.

        Skipped entirely when the cell is clean and the equality policy
        considers value unchanged. Subscriber exceptions are collected and
        handled after the wave; a BaseException that is not an Exception
        (KeyboardInterrupt, SystemExit) aborts the wave on the spot.
        """
        if not self._dirty and not should_notify(self._value, value, self._skip_when_equal):
            return self._value
        try:
            errors = self._invalidate()
        except BaseException:
            # interrupted mid-invalidation: the wave is abandoned, the old value stays
            self._dirty = False
            raise
        previous = self._value
        self._value = value
        self._dirty = False
        errors.extend(self._subscribers.notify_value(value, previous))
        handle_errors(errors)
        return value

    def update(self, fn: Callable[[T], T]) -> T:
        return self.set(fn(self._value))

    def listen(self, run: Run, invalidate: Invalidator | None = None) -> Subscription:
        """Register callbacks without the immediate call subscribe() makes."""
        if not len(self._subscribers):
            self._start_lifecycle()
        entry = SubscriberEntry(run, invalidate)
        self._subscribers.add(entry)
        return Subscription(lambda: self._remove(entry))

    def subscribe(self, run: Run, invalidate: Invalidator | None = None) -> Subscription:
        """Register callbacks, then call run(value, value) right away."""
        subscription = self.listen(run, invalidate)
        try:
            run(self._value, self._value)
        except BaseException:
            subscription.unsubscribe()
            raise
        return subscription

    def readonly(self) -> ReadonlyCell[T]:
        return ReadonlyCell(self)

    def pipe(self, *fns: Callable[[Any], Any]) -> Any:
        return pipe(self, *fns)

    def reset_silently(self, value: T) -> None:
        """Replace the value and clear dirty without notifying anyone.

        Meant for the owner of a cell that has just lost its last subscriber,
        as Derived does on teardown. Anyone else should use set().
        """
        self._value = value
        self._dirty = False

    def _remove(self, entry: SubscriberEntry[T]) -> bool:
        if not self._subscribers.remove(entry):
            return False
        if not len(self._subscribers):
            self._stop_lifecycle()
        return True

    def _start_lifecycle(self) -> None:
        if self._start is None:
            return
        logger.debug("Starting %r", self)
        stop = self._start(self.set, self.invalidate)
        self._stop = stop if callable(stop) else None

    def _stop_lifecycle(self) -> None:
        stop, self._stop = self._stop, None
        if stop is not None:
            logger.debug("Stopping %r", self)
            stop()

    def __repr__(self) -> str:
        dirty = ", dirty" if self._dirty else ""
        return f"Cell({self._value!r}{dirty})"


class ReadonlyCell(Generic[T]):
    """Read side of a Cell: no set, update or invalidate."""

    __slots__ = ("_cell",)

    def __init__(self, cell: Cell[T]) -> None:
        self._cell = cell

    def get(self) -> T:
        return self._cell.get()

    def is_dirty(self) -> bool:
        return self._cell.is_dirty()

    def listen(self, run: Run, invalidate: Invalidator | None = None) -> Subscription:
        return self._cell.listen(run, invalidate)

    def subscribe(self, run: Run, invalidate: Invalidator | None = None) -> Subscription:
        return self._cell.subscribe(run, invalidate)

    def pipe(self, *fns: Callable[[Any], Any]) -> Any:
        return pipe(self, *fns)

    def __repr__(self) -> str:
        return f"ReadonlyCell({self._cell.get()!r})"


def writable(
    value: T = None,
    start: StartStop | None = None,
    *,
    skip_when_equal: EqualityMode | str = EqualityMode.PRIMITIVE,
) -> Cell[T]:
    """Factory for a Cell.

    Usage:
        count = writable(0)
        count.subscribe(lambda value, previous: print(previous, "->", value))
        count.update(lambda n: n + 1)   # prints: 0 -> 1
    """
    return Cell(value, start, skip_when_equal=skip_when_equal)


def readable(
    value: T = None,
    start: StartStop | None = None,
    *,
    skip_when_equal: EqualityMode | str = EqualityMode.PRIMITIVE,
) -> ReadonlyCell[T]:
    """A cell only its own lifecycle hook can write to.

    Usage:
        def start(set, invalidate):
            handle = sensor.on_reading(set)
            return handle.cancel

        temperature = readable(None, start)
    """
    return Cell(value, start, skip_when_equal=skip_when_equal).readonly()
