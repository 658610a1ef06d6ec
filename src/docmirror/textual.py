"""Textual integration for docmirror. Opt-in — requires textual.

Mirrors are updated from store callbacks, which may arrive while widgets are
being swapped out or from a client library's worker thread. ``reaction``
here guards against both: it skips effects while the app is paused or not
running, swallows ``NoMatches`` from widget queries, and marshals calls from
other threads through ``app.call_from_thread``.
"""

import copy
import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

from docmirror.reaction import reaction as _reaction

# id(app) present <-> inside a pause() block for that app.
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend guarded effects while the widget tree is rebuilt."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def reaction(app, data_fn, effect_fn, *, fire_immediately=False):
    """docmirror.reaction() whose effect_fn(new, old) is safe to touch widgets."""
    _main = threading.get_ident()

    def _guarded(value, previous):
        if not is_safe(app):
            return
        if threading.get_ident() != _main:
            app.call_from_thread(_safe, value, previous)
        else:
            _safe(value, previous)

    def _safe(value, previous):
        try:
            effect_fn(value, previous)
        except NoMatches:
            pass

    return _reaction(data_fn, _guarded, fire_immediately=fire_immediately)


def bind(app, mirror, render, *, fire_immediately=True):
    """Call render(data) with a copy of mirror.data whenever it changes.

    Copies are taken because key patches mutate the mirror in place.

    Usage:
        class NoteView(Static):
            def on_mount(self):
                self._binding = bind(self.app, note, lambda data: self.update(data.get("title", "")))
    """
    return reaction(
        app,
        lambda: copy.deepcopy(mirror.data),
        lambda data, _previous: render(data),
        fire_immediately=fire_immediately,
    )


def bind_changed(app, mirror, render, *, fire_immediately=True):
    """Call render(is_changed) whenever the mirror's dirty flag flips."""
    return reaction(
        app,
        lambda: mirror.is_changed,
        lambda changed, _previous: render(changed),
        fire_immediately=fire_immediately,
    )
