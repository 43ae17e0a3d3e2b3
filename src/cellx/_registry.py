"""Subscription registry shared by Cell and Derived.

Every cell owns one SubscriberRegistry: an ordered list of
(value callback, invalidation callback) entries. Notification waves iterate a
snapshot of that list, so a callback may subscribe or unsubscribe anything
(itself included) while the wave is running. Entries removed mid-wave are
skipped for the rest of the wave; entries added mid-wave wait for the next one.

Subscriber failures are isolated: the wave always reaches every subscriber,
and the owning cell commits its own state before the collected exceptions
go to the error handler. By default the first one is re-raised and the rest
are logged. Install another policy once with set_error_handler().
Only Exception subclasses are collected; KeyboardInterrupt, SystemExit and
other BaseExceptions abort the wave and propagate immediately.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

T = TypeVar("T")

Run = Callable[[T, T], None]
Invalidator = Callable[[], None]
ErrorHandler = Callable[[list[Exception]], None]

logger = logging.getLogger("cellx.registry")

_error_handler: ErrorHandler | None = None


def set_error_handler(handler: ErrorHandler | None) -> None:
    """Replace the policy applied to subscriber exceptions after a wave.

    The handler receives every exception raised by subscribers during one
    notification wave, in subscription order. BaseExceptions that are not
    Exceptions never reach it. Pass None to restore the
    default (log extras, re-raise the first).

    Usage:
        def log_and_continue(errors):
            for error in errors:
                log.error("Subscriber failed", exc_info=error)

        cellx.set_error_handler(log_and_continue)
    """
    global _error_handler
    _error_handler = handler


def _reraise_first(errors: list[Exception]) -> None:
    for extra in errors[1:]:
        logger.error("Subscriber raised during the same wave", exc_info=extra)
    raise errors[0]


def handle_errors(errors: list[Exception]) -> None:
    """Apply the installed error policy to the failures of one wave."""
    if not errors:
        return
    if _error_handler is None:
        _reraise_first(errors)
    else:
        _error_handler(errors)


@dataclass(frozen=True, eq=False)
class SubscriberEntry(Generic[T]):
    """One registration. Compared by identity, so the same callbacks may be registered twice."""

    run: Run
    invalidate: Invalidator | None = None


class SubscriberRegistry(Generic[T]):
    """Ordered subscriber entries with re-entrant-safe notification."""

    __slots__ = ("_entries",)

    def __init__(self) -> None:
        self._entries: list[SubscriberEntry[T]] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry: SubscriberEntry[T]) -> bool:
        return any(e is entry for e in self._entries)

    def add(self, entry: SubscriberEntry[T]) -> None:
        self._entries.append(entry)

    def remove(self, entry: SubscriberEntry[T]) -> bool:
        """Remove by identity. False if the entry was already gone."""
        for index, existing in enumerate(self._entries):
            if existing is entry:
                del self._entries[index]
                return True
        return False

    def notify_invalidate(self) -> list[Exception]:
        """Run every invalidation callback. Returns what they raised."""
        errors: list[Exception] = []
        for entry in list(self._entries):
            if entry.invalidate is None or entry not in self:
                continue
            try:
                entry.invalidate()
            except Exception as exc:
                errors.append(exc)
        return errors

    def notify_value(self, value: T, previous: T) -> list[Exception]:
        """Run every value callback with (value, previous). Returns what they raised."""
        errors: list[Exception] = []
        for entry in list(self._entries):
            if entry not in self:
                continue
            try:
                entry.run(value, previous)
            except Exception as exc:
                errors.append(exc)
        return errors


class Subscription:
    """Handle returned by subscribe() and listen().

    Call it, or call .unsubscribe(), to cancel. Returns True the first time
    and False on every later call, so cleanup code may run it freely.
    """

    __slots__ = ("_cancel", "_active")

    def __init__(self, cancel: Callable[[], bool]) -> None:
        self._cancel = cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> bool:
        if not self._active:
            return False
        self._active = False
        return self._cancel()

    def __call__(self) -> bool:
        return self.unsubscribe()

    def __repr__(self) -> str:
        state = "active" if self._active else "cancelled"
        return f"Subscription({state})"
