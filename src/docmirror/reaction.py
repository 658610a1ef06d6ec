"""Reactions — transition handlers driven by observable state.

``reaction(data_fn, effect_fn)`` wraps data_fn in its own Computed and
subscribes to it. When a dependency changes the reaction is queued; once the
queue drains the Computed is refreshed, and ``effect_fn(new, old)`` runs only
if the refresh replaced the cached value. This is the observer hook the
document mirror uses for reference and connectivity transitions.
"""

from __future__ import annotations

import operator
from typing import Callable, TypeVar

from docmirror import _anchor
from docmirror._tracking import enqueue
from docmirror.computed import Computed

T = TypeVar("T")


class Reaction:
    """Calls effect_fn with (new, old) whenever data_fn's result changes."""

    __slots__ = ("_id", "_source")

    def __init__(
        self,
        data_fn: Callable[[], T],
        effect_fn: Callable[[T, T | None], None],
        equals: Callable[[T, T], bool] = operator.eq,
    ) -> None:
        self._id = _anchor.new_id()
        _anchor.effects[self._id] = effect_fn
        self._source = Computed(data_fn, equals)
        _anchor.observers[self._source._id].add(self)

    @property
    def disposed(self) -> bool:
        return self._id not in _anchor.effects

    def _invalidate(self) -> None:
        if not self.disposed:
            enqueue(self)

    def _run(self) -> None:
        effect = _anchor.effects.get(self._id)
        if effect is None:
            return
        old = self._source._cached()
        if self._source._refresh():
            effect(self._source._cached(), old)

    def dispose(self) -> None:
        """Stop reacting and release the tracked state."""
        self._source.dispose()
        _anchor.forget(self._id)

    def __repr__(self) -> str:
        if self.disposed:
            return "Reaction(disposed)"
        name = getattr(_anchor.derivation_fns[self._source._id], "__name__", "fn")
        return f"Reaction({name}, active)"


def reaction(
    data_fn: Callable[[], T],
    effect_fn: Callable[[T, T | None], None],
    *,
    fire_immediately: bool = False,
    equals: Callable[[T, T], bool] = operator.eq,
) -> Reaction:
    """Track data_fn's observables; call effect_fn(new, old) when its result changes.

    With fire_immediately the effect runs once on setup with ``old=None``.
    ``equals`` decides whether a recomputed result counts as a change.
    Returns the Reaction (call .dispose() to stop).

    Usage:
        address = Observable(None)
        seen = []
        r = reaction(lambda: address.get(), lambda new, old: seen.append((new, old)))
        address.set("notes/n1")
        # seen == [("notes/n1", None)]
        r.dispose()
    """
    r = Reaction(data_fn, effect_fn, equals)
    if fire_immediately:
        r._run()
    else:
        r._source._refresh()
    return r
