"""Observable values — state that tracks its readers.

Reading an Observable inside a Computed or Reaction registers the dependency.
Writing it invalidates every dependent derivation and reports a change record
``(path, value)`` to plain listeners. A whole-value ``set`` reports the empty
path; ``set_path`` mutates one nested key in place and reports its path.
"""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping, Sequence
from typing import Callable, Generic, TypeVar

from docmirror import _anchor
from docmirror._tracking import current_derivation, invalidate

T = TypeVar("T")

Path = tuple[str, ...]
Listener = Callable[[Path, object], None]


class Observable(Generic[T]):
    """A single observable value with dependency tracking and change records."""

    __slots__ = ("_id",)

    def __init__(self, value: T) -> None:
        self._id = _anchor.new_id()
        _anchor.values[self._id] = value
        _anchor.observers[self._id] = set()
        _anchor.listeners[self._id] = []

    def get(self) -> T:
        """Read the value. Inside a derivation, registers the dependency."""
        derivation = current_derivation.get()
        if derivation is not None:
            _anchor.observers[self._id].add(derivation)
            derivation._dependencies.add(self)
        return _anchor.values[self._id]

    def peek(self) -> T:
        """Read the value without registering a dependency."""
        return _anchor.values[self._id]

    def set(self, value: T) -> bool:
        """Replace the value. Returns False when it was already equal."""
        old = _anchor.values[self._id]
        if old is value or old == value:
            return False
        _anchor.values[self._id] = value
        self._notify((), value)
        return True

    def set_path(self, path: Sequence[str], value: object) -> bool:
        """Set one nested key of a mapping value in place.

        Intermediate mappings are created when missing. Returns False when the
        key already held an equal value.
        """
        path = tuple(path)
        if not path:
            return self.set(value)
        target = _anchor.values[self._id]
        if not isinstance(target, MutableMapping):
            raise TypeError(f"cannot set {'.'.join(path)!r} on {type(target).__name__}")
        for key in path[:-1]:
            child = target.get(key)
            if not isinstance(child, MutableMapping):
                child = {}
                target[key] = child
            target = child
        leaf = path[-1]
        if leaf in target and target[leaf] == value:
            return False
        target[leaf] = value
        self._notify(path, value)
        return True

    def get_path(self, path: Sequence[str], default: object = None) -> object:
        value = self.get()
        for key in path:
            if not isinstance(value, Mapping) or key not in value:
                return default
            value = value[key]
        return value

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change-record listener. Returns a function that removes it."""
        _anchor.listeners[self._id].append(listener)

        def _unsubscribe() -> None:
            try:
                _anchor.listeners[self._id].remove(listener)
            except (KeyError, ValueError):
                pass

        return _unsubscribe

    def _notify(self, path: Path, value: object) -> None:
        for listener in list(_anchor.listeners[self._id]):
            listener(path, value)
        invalidate(_anchor.observers[self._id])

    def _remove_observer(self, observer) -> None:
        readers = _anchor.observers.get(self._id)
        if readers is not None:
            readers.discard(observer)

    def dispose(self) -> None:
        """Drop the value, its readers and its listeners. Not reusable."""
        _anchor.forget(self._id)

    def __repr__(self) -> str:
        return f"Observable({_anchor.values[self._id]!r})"
