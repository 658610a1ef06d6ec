"""Computed values — derived state with equality suppression.

A Computed wraps a pure function of other observables. Invalidation only
marks it stale; the function runs again on the next read. When the new
result equals the cached one the cached object is kept, so a derived handle
such as a document reference keeps its identity across equivalent inputs,
and ``_refresh`` tells a reaction whether anything actually changed.
"""

from __future__ import annotations

import operator
from typing import Callable, Generic, TypeVar

from docmirror import _anchor
from docmirror._tracking import current_derivation, propagate

T = TypeVar("T")

_UNSET = object()


class Computed(Generic[T]):
    """A derived value with dependency tracking, caching and change detection."""

    __slots__ = ("_id", "_equals")

    def __init__(self, fn: Callable[[], T], equals: Callable[[T, T], bool] = operator.eq) -> None:
        self._id = _anchor.new_id()
        self._equals = equals
        _anchor.derivation_fns[self._id] = fn
        _anchor.cached_values[self._id] = _UNSET
        _anchor.stale[self._id] = True
        _anchor.dependencies[self._id] = set()
        _anchor.observers[self._id] = set()

    @property
    def _dependencies(self) -> set:
        return _anchor.dependencies[self._id]

    @property
    def disposed(self) -> bool:
        return self._id not in _anchor.derivation_fns

    def get(self) -> T:
        derivation = current_derivation.get()
        if derivation is not None:
            _anchor.observers[self._id].add(derivation)
            derivation._dependencies.add(self)
        self._refresh()
        return _anchor.cached_values[self._id]

    def peek(self) -> T:
        """Current value without registering the reader."""
        self._refresh()
        return _anchor.cached_values[self._id]

    def _cached(self):
        value = _anchor.cached_values[self._id]
        return None if value is _UNSET else value

    def _refresh(self) -> bool:
        """Recompute when stale. True when the cached value was replaced."""
        if not _anchor.stale[self._id]:
            return False
        for dep in _anchor.dependencies[self._id]:
            dep._remove_observer(self)
        _anchor.dependencies[self._id].clear()

        token = current_derivation.set(self)
        try:
            value = _anchor.derivation_fns[self._id]()
        finally:
            current_derivation.reset(token)
        _anchor.stale[self._id] = False

        previous = _anchor.cached_values[self._id]
        if previous is not _UNSET and self._equals(previous, value):
            return False
        _anchor.cached_values[self._id] = value
        return True

    def _invalidate(self) -> None:
        # Disposed, never read, or already stale: nobody downstream is current.
        if _anchor.stale.get(self._id, True):
            return
        _anchor.stale[self._id] = True
        propagate(_anchor.observers[self._id])

    def _remove_observer(self, observer) -> None:
        readers = _anchor.observers.get(self._id)
        if readers is not None:
            readers.discard(observer)

    def dispose(self) -> None:
        """Disconnect from dependencies and release all state. Not reusable."""
        for dep in _anchor.dependencies.get(self._id, ()):
            dep._remove_observer(self)
        _anchor.forget(self._id)

    def __repr__(self) -> str:
        if self.disposed:
            return "Computed(disposed)"
        name = getattr(_anchor.derivation_fns[self._id], "__name__", "fn")
        if _anchor.stale[self._id]:
            return f"Computed({name}, stale)"
        return f"Computed({name}, cached={_anchor.cached_values[self._id]!r})"


def computed(fn: Callable[[], T]) -> Computed[T]:
    """Decorator form of Computed.

    Usage:
        address = Observable("users/u1")

        @computed
        def ready():
            return address_ready(address.get())
    """
    return Computed(fn)
