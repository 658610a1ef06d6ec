"""Push-based event stream with filter/map chaining.

The in-memory document store publishes every changed document path on one
stream; each snapshot listener hangs a filtered, mapped child off it.
Disposing a child detaches it from its parent, which is what an
``on_snapshot`` unsubscribe does.
"""

from __future__ import annotations

from typing import Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")

Disposer = Callable[[], None]


class EventStream(Generic[T]):
    """Push-based event stream with operator chaining."""

    def __init__(self) -> None:
        self._subscribers: list[Callable[[T], None]] = []
        self._children: list[EventStream] = []
        self._disposed = False
        self._parent_disposer: Disposer | None = None

    @property
    def disposed(self) -> bool:
        return self._disposed

    def emit(self, value: T) -> None:
        if self._disposed:
            return
        for cb in list(self._subscribers):
            cb(value)

    def subscribe(self, callback: Callable[[T], None]) -> Disposer:
        """Register a callback. Returns a function that removes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    def map(self, fn: Callable[[T], U]) -> EventStream[U]:
        child: EventStream[U] = EventStream()
        child._parent_disposer = self._adopt(child)
        child._parent_disposer = _chain(child._parent_disposer,
                                        self.subscribe(lambda v: child.emit(fn(v))))
        return child

    def filter(self, fn: Callable[[T], bool]) -> EventStream[T]:
        child: EventStream[T] = EventStream()
        child._parent_disposer = self._adopt(child)
        child._parent_disposer = _chain(child._parent_disposer,
                                        self.subscribe(lambda v: child.emit(v) if fn(v) else None))
        return child

    def dispose(self) -> None:
        """Tear down this stream and everything downstream, detaching from the parent."""
        self._disposed = True
        self._subscribers.clear()
        for child in list(self._children):
            child.dispose()
        self._children.clear()
        if self._parent_disposer is not None:
            self._parent_disposer()
            self._parent_disposer = None

    def _adopt(self, child: EventStream) -> Disposer:
        self._children.append(child)

        def _remove() -> None:
            try:
                self._children.remove(child)
            except ValueError:
                pass

        return _remove


def _chain(first: Disposer, second: Disposer) -> Disposer:
    def _both() -> None:
        first()
        second()

    return _both
