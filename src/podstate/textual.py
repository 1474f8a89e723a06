"""Textual integration for podstate. Opt-in — requires textual.

Guard, NoMatches handling and thread marshalling live here, not at the
call sites; the core stays free of any Textual dependency.
"""

import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

# Module-owned pause state, keyed by id(app) so multiple apps work in tests.
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend guarded renders during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def consume(app, ref, render):
    """Render with ``render(ref)`` now and whenever a watched provider changes.

    Guards against firing during pause/not-running, catches NoMatches
    from widget queries, and marshals cross-thread calls via call_from_thread.
    Returns a disposer that stops re-rendering.
    """
    _main = threading.get_ident()

    def _guarded():
        if not is_safe(app):
            return
        if threading.get_ident() != _main:
            app.call_from_thread(_safe)
        else:
            _safe()

    def _safe():
        try:
            render(ref)
        except NoMatches:
            pass

    dispose = ref.on_change(_guarded)
    _guarded()
    return dispose
