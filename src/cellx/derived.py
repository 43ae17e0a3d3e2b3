"""Derived cells — values computed from one or more source cells.

A Derived is idle until something subscribes to it. On the first subscriber
it subscribes to every source, passing both a value callback and an
invalidation callback. When a source is invalidated, the matching dependency
slot goes dirty and the Derived invalidates itself, so its own subscribers
hear about the change before any new value exists anywhere downstream. When a
source delivers a value, the slot goes clean; the update function only runs
once every slot is clean again. That is what keeps diamonds glitch-free:

        s
       / \\
      a   b          s.set(x) runs c's update exactly once,
       \\ /           with the new a and the new b together.
        c

When the last subscriber leaves, the Derived detaches from its sources and
forgets its value. Reading an idle Derived recomputes from scratch each time.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Generic, Optional, Sequence, TypeVar

from cellx._registry import Invalidator, Run, Subscription
from cellx.cell import Cell, Stopper
from cellx.equality import EqualityMode, should_any_notify
from cellx.interop import cancel, get as read_store, subscribe_to
from cellx.pipe import pipe

T = TypeVar("T")

Setter = Callable[[T], T]
UpdateFn = Callable[[Any, Setter, Any, Any], Optional[Stopper]]

logger = logging.getLogger("cellx.derived")


def _noop(*_: Any) -> None:
    pass


@dataclass(frozen=True)
class DerivedOptions(Generic[T]):
    """Everything a Derived needs. derive() and derived() both end up here.

    update(values, set, value, previous_values) is called whenever the
    sources have settled on new values. values is a bare value for a single
    source and a list for a list of sources. It may call set() any number of
    times and may return a stop action, run before the next update or at
    teardown, whichever comes first.
    """

    sources: Any
    update: UpdateFn
    initial: Optional[T] = None
    wait_for_clean: bool = True
    skip_when_unchanged: EqualityMode | str = EqualityMode.NEVER
    skip_when_equal: EqualityMode | str = EqualityMode.PRIMITIVE
    keep_alive: bool = False

    def __post_init__(self) -> None:
        if not self.single and not self.sources:
            raise ValueError("A Derived needs at least one source")

    @property
    def single(self) -> bool:
        return not isinstance(self.sources, (list, tuple))

    def source_list(self) -> list:
        return [self.sources] if self.single else list(self.sources)


class DependencySlots:
    """Per-source bookkeeping of a Derived, indexed by source position.

    previous is only rolled forward by snapshot_previous(), after an update
    actually ran, so skipped waves never show up as history.
    """

    __slots__ = ("_single", "_values", "_previous", "_dirty", "_handles", "_fresh")

    def __init__(self, count: int, single: bool) -> None:
        self._single = single
        self._handles: list[Any] = [None] * count
        self._values: list[Any] = []
        self._previous: list[Any] = []
        self._dirty: list[bool] = []
        self._fresh = True
        self.reset()

    def mark_dirty(self, index: int) -> None:
        self._dirty[index] = True

    def mark_clean(self, index: int, value: Any) -> None:
        self._values[index] = value
        self._dirty[index] = False

    def any_dirty(self) -> bool:
        return any(self._dirty)

    def attach(self, index: int, handle: Any) -> None:
        self._handles[index] = handle

    def detach_all(self) -> None:
        handles, self._handles = self._handles, [None] * len(self._handles)
        for handle in handles:
            if handle is not None:
                cancel(handle)

    def snapshot_previous(self) -> None:
        self._previous = list(self._values)
        self._fresh = False

    def unchanged(self, mode: EqualityMode | str) -> bool:
        """True if no value moved since the last dispatched update, per mode."""
        if self._fresh:
            return False
        return not should_any_notify(self._previous, self._values, mode)

    def shape(self, values: Sequence[Any]) -> Any:
        return values[0] if self._single else list(values)

    def current(self) -> Any:
        return self.shape(self._values)

    def previous(self) -> Any:
        """Values at the last dispatched update; the current ones before the first."""
        return self.shape(self._values if self._fresh else self._previous)

    def reset(self) -> None:
        count = len(self._handles)
        self._values = [None] * count
        self._previous = [None] * count
        self._dirty = [True] * count
        self._fresh = True


class Derived(Generic[T]):
    """A read-only cell whose value is computed from source cells."""

    __slots__ = ("_options", "_sources", "_slots", "_cell", "_stop", "_active", "_keep_alive")

    def __init__(self, options: DerivedOptions[T]) -> None:
        self._options = options
        self._sources = options.source_list()
        self._slots = DependencySlots(len(self._sources), options.single)
        self._cell: Cell[T] = Cell(
            options.initial, self._start, skip_when_equal=options.skip_when_equal
        )
        self._stop: Stopper | None = None
        self._active = False
        self._keep_alive: Subscription | None = None
        if options.keep_alive:
            self._keep_alive = self._cell.listen(_noop)

    @property
    def active(self) -> bool:
        """True while subscribed to the sources."""
        return self._active

    def get(self) -> T:
        """Committed value while active; a one-shot recomputation while idle."""
        if self._active:
            return self._cell.get()
        return self._compute_once()

    def is_dirty(self) -> bool:
        return self._cell.is_dirty()

    def listen(self, run: Run, invalidate: Invalidator | None = None) -> Subscription:
        return self._cell.listen(run, invalidate)

    def subscribe(self, run: Run, invalidate: Invalidator | None = None) -> Subscription:
        return self._cell.subscribe(run, invalidate)

    def pipe(self, *fns: Callable[[Any], Any]) -> Any:
        return pipe(self, *fns)

    def dispose(self) -> bool:
        """Drop the keep-alive subscription, if any. Other subscribers are untouched."""
        keep_alive, self._keep_alive = self._keep_alive, None
        return keep_alive.unsubscribe() if keep_alive is not None else False

    # --- Lifecycle ---

    def _start(self, set: Setter, invalidate: Callable[[], None]) -> Stopper:
        logger.debug("Activating %r on %d source(s)", self, len(self._sources))
        self._active = True
        for index, source in enumerate(self._sources):
            handle = subscribe_to(
                source,
                partial(self._on_value, index),
                partial(self._on_invalidate, index),
            )
            self._slots.attach(index, handle)
        return self._teardown

    def _teardown(self) -> None:
        logger.debug("Tearing down %r", self)
        self._active = False
        self._slots.detach_all()
        self._run_stop()
        self._slots.reset()
        self._cell.reset_silently(self._options.initial)

    # --- Per-source callbacks ---

    def _on_invalidate(self, index: int) -> None:
        if not self._active:
            return
        self._slots.mark_dirty(index)
        self._cell.invalidate()

    def _on_value(self, index: int, value: Any, *_: Any) -> None:
        if not self._active:
            return
        self._slots.mark_clean(index, value)
        if self._options.wait_for_clean and self._slots.any_dirty():
            return
        if self._slots.unchanged(self._options.skip_when_unchanged):
            self._settle()
            return
        self._dispatch()

    def _dispatch(self) -> None:
        self._run_stop()
        try:
            stop = self._options.update(
                self._slots.current(),
                self._cell.set,
                self._cell.get(),
                self._slots.previous(),
            )
        except BaseException:
            if self._active:
                self._slots.snapshot_previous()
                # keep the last committed value so later waves invalidate again
                self._settle()
            raise
        if not self._active:
            # torn down from inside the update; nothing will run this later
            if callable(stop):
                stop()
            return
        self._slots.snapshot_previous()
        self._stop = stop if callable(stop) else None
        self._settle()

    def _settle(self) -> None:
        """Resolve dirtiness when the wave ended without a set()."""
        if self._cell.is_dirty():
            self._cell.set(self._cell.get())

    def _run_stop(self) -> None:
        stop, self._stop = self._stop, None
        if stop is not None:
            stop()

    def _compute_once(self) -> T:
        values = self._slots.shape([read_store(source) for source in self._sources])
        result = [self._options.initial]

        def _set(value: T) -> T:
            result[0] = value
            return value

        stop = self._options.update(values, _set, self._options.initial, values)
        if callable(stop):
            stop()
        return result[0]

    def __repr__(self) -> str:
        state = f"active, value={self._cell.get()!r}" if self._active else "idle"
        name = getattr(self._options.update, "__name__", "update")
        return f"Derived({name}, {state})"


def _positional_arity(fn: Callable) -> int:
    """Required positional parameters of fn, capped at 3.

    Defaulted parameters are left to their defaults. Unknown signatures
    (builtins like str) get the values only.
    """
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        return 1
    count = 0
    for param in params:
        if param.kind is param.VAR_POSITIONAL:
            return 3
        if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD):
            if param.default is param.empty:
                count += 1
    return min(count, 3)


def derived(options: DerivedOptions[T]) -> Derived[T]:
    """Build a Derived from a full DerivedOptions.

    Usage:
        def poll(url, set, value, previous_url):
            timer = Poller(url, on_result=set)
            timer.start()
            return timer.cancel

        status = derived(DerivedOptions(sources=endpoint, update=poll, initial="unknown"))
    """
    return Derived(options)


def derive(
    sources: Any,
    fn: Callable[..., T],
    *,
    initial: Optional[T] = None,
    wait_for_clean: bool = True,
    skip_when_unchanged: EqualityMode | str = EqualityMode.NEVER,
    skip_when_equal: EqualityMode | str = EqualityMode.PRIMITIVE,
    keep_alive: bool = False,
) -> Derived[T]:
    """Derived whose value is fn(values, previous_value, previous_values).

    fn may declare fewer parameters; it gets as many as it takes, in that
    order.

    Usage:
        price = writable(10)
        qty = writable(3)
        total = derive([price, qty], lambda v: v[0] * v[1])
        total.get()  # 30
    """
    arity = _positional_arity(fn)

    def update(values: Any, set: Setter, value: Any, previous_values: Any) -> None:
        set(fn(*(values, value, previous_values)[:arity]))

    update.__name__ = getattr(fn, "__name__", "update")
    return Derived(
        DerivedOptions(
            sources=sources,
            update=update,
            initial=initial,
            wait_for_clean=wait_for_clean,
            skip_when_unchanged=skip_when_unchanged,
            skip_when_equal=skip_when_equal,
            keep_alive=keep_alive,
        )
    )
