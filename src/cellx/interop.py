"""Foreign-store adapter — lets any minimally-conforming observable feed cells.

The minimal store contract is one method: subscribe(run) calls run with the
current value before returning, and returns either a cancel callable or an
object with an unsubscribe() method. Cells meet it; so do most third-party
observables with a Svelte- or RxJS-like surface.
"""

from __future__ import annotations

import inspect
from typing import Any, Callable, Protocol, TypeVar, runtime_checkable

T = TypeVar("T")


class StoreContractError(TypeError):
    """A foreign store broke the minimal store contract."""


@runtime_checkable
class SupportsSubscribe(Protocol):
    def subscribe(self, run: Callable[..., None]) -> Any: ...


def _required_positionals(fn: Callable) -> int | None:
    """Positional parameters without defaults. None if unknown or variadic."""
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        return None
    count = 0
    for param in params:
        if param.kind is param.VAR_POSITIONAL:
            return None
        if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD):
            if param.default is param.empty:
                count += 1
    return count


def _accepts_invalidator(subscribe: Callable) -> bool:
    try:
        params = inspect.signature(subscribe).parameters.values()
    except (TypeError, ValueError):
        return False
    positional = 0
    for param in params:
        if param.kind is param.VAR_POSITIONAL:
            return True
        if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD):
            positional += 1
    return positional >= 2


def cancel(handle: Any) -> Any:
    """Cancel whatever a subscribe() call returned."""
    if callable(handle):
        return handle()
    unsubscribe = getattr(handle, "unsubscribe", None)
    if callable(unsubscribe):
        return unsubscribe()
    raise StoreContractError(
        f"subscribe() returned {handle!r}, which is neither callable nor has unsubscribe()"
    )


def subscribe_to(
    store: SupportsSubscribe,
    run: Callable[..., None],
    invalidate: Callable[[], None] | None = None,
) -> Any:
    """Subscribe to any store, passing invalidate only where it is understood.

    run must accept (value) as well as (value, previous): foreign stores call
    it with one argument, cells with two.
    """
    if invalidate is not None and _accepts_invalidator(store.subscribe):
        return store.subscribe(run, invalidate)
    return store.subscribe(run)


def get(store: SupportsSubscribe) -> Any:
    """Current value of any store.

    Uses a zero-argument get() when the store has one. Otherwise subscribes,
    keeps the value delivered synchronously, and cancels straight away.

    Raises StoreContractError if subscribe() does not call back synchronously.
    """
    getter = getattr(store, "get", None)
    if callable(getter) and _required_positionals(getter) == 0:
        return getter()

    captured: list[Any] = []
    handle = store.subscribe(lambda value, *_: captured.append(value))
    cancel(handle)
    if not captured:
        raise StoreContractError(
            "Subscribed function not called synchronously at subscription time."
        )
    return captured[0]
