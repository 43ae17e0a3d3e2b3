"""Textual integration for cellx. Opt-in — import only for Textual apps.

Widgets bind to cells through bind(), which guards the effect so it never
runs while the widget tree is being rebuilt or the app is not running,
ignores NoMatches from widget queries, and marshals notifications that
arrive on another thread through app.call_from_thread.
"""

import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

from cellx._registry import Subscription

# Module-owned pause state, keyed by id(app) so multiple apps work in tests.
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend bound effects during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def bind(app, cell, effect, *, immediate=True) -> Subscription:
    """Run effect(value) whenever cell changes, while app is safe to touch.

    With immediate=True (the default) effect also runs once right away with
    the current value, as subscribe() does. Cancel the returned Subscription
    when the widget unmounts.

    Usage:
        class Counter(Static):
            def on_mount(self):
                self._binding = stx.bind(self.app, count, lambda n: self.update(str(n)))

            def on_unmount(self):
                self._binding()
    """
    _main = threading.get_ident()

    def _guarded(value, previous=None):
        if not is_safe(app):
            return
        if threading.get_ident() != _main:
            app.call_from_thread(_safe, value)
        else:
            _safe(value)

    def _safe(value):
        try:
            effect(value)
        except NoMatches:
            pass

    if immediate:
        return cell.subscribe(_guarded)
    return cell.listen(_guarded)
