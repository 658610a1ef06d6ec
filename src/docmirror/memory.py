"""In-memory document store implementing ``docmirror.remote``.

Documents are plain dicts keyed by their normalized path. Every change is
published on an EventStream of paths; snapshot listeners are filtered,
mapped children of that stream and receive a fresh snapshot on subscribe and
after every write to their document. Each coroutine yields to the event loop
once before touching state, like a network round trip would.

Every write is appended to ``operations`` as ``(kind, path, payload)`` where
kind is one of ``set``, ``set-merge``, ``update``, ``add`` or ``delete``.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
import uuid
from collections.abc import Mapping
from typing import Any, Callable

from docmirror.errors import InvalidAddress
from docmirror.path import SEPARATOR, address_ready
from docmirror.remote import Unsubscribe
from docmirror.stream import EventStream

logger = logging.getLogger("docmirror.memory")


class NotFound(KeyError):
    """Raised by ``update`` when the document does not exist."""


def _normalize(path: str) -> str:
    return path.strip(SEPARATOR)


def _deep_merge(target: dict, source: Mapping) -> None:
    for key, value in source.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


class MemoryDocumentSnapshot:
    __slots__ = ("reference", "_data")

    def __init__(self, reference: MemoryDocumentReference, data: dict | None) -> None:
        self.reference = reference
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    @property
    def id(self) -> str:
        return self.reference.id

    def to_dict(self) -> dict[str, Any] | None:
        return copy.deepcopy(self._data)

    def __repr__(self) -> str:
        return f"MemoryDocumentSnapshot({self.reference.path!r}, {self._data!r})"


class MemoryDocumentReference:
    __slots__ = ("_store", "_path")

    def __init__(self, store: MemoryDocumentStore, path: str) -> None:
        self._store = store
        self._path = path

    @property
    def path(self) -> str:
        return self._path

    @property
    def id(self) -> str:
        return self._path.rsplit(SEPARATOR, 1)[-1]

    async def get(self) -> MemoryDocumentSnapshot:
        await asyncio.sleep(0)
        return self._store._snapshot(self._path)

    async def set(self, data: Mapping[str, Any], merge: bool = False) -> None:
        await asyncio.sleep(0)
        self._store._set(self._path, data, merge)

    async def update(self, data: Mapping[str, Any]) -> None:
        await asyncio.sleep(0)
        self._store._update(self._path, data)

    async def delete(self) -> None:
        await asyncio.sleep(0)
        self._store._delete(self._path)

    def on_snapshot(
        self,
        on_value: Callable[[MemoryDocumentSnapshot], None],
        on_error: Callable[[Exception], None],
    ) -> Unsubscribe:
        return self._store._listen(self._path, on_value, on_error)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MemoryDocumentReference):
            return NotImplemented
        return self._store is other._store and self._path == other._path

    def __hash__(self) -> int:
        return hash((id(self._store), self._path))

    def __repr__(self) -> str:
        return f"MemoryDocumentReference({self._path!r})"


class MemoryCollectionReference:
    __slots__ = ("_store", "_path")

    def __init__(self, store: MemoryDocumentStore, path: str) -> None:
        self._store = store
        self._path = path

    @property
    def path(self) -> str:
        return self._path

    def document(self, key: str | None = None) -> MemoryDocumentReference:
        key = key if key is not None else self._store.new_id()
        return self._store.document(self._path + SEPARATOR + key)

    async def add(self, data: Mapping[str, Any]) -> MemoryDocumentReference:
        reference = self.document()
        await asyncio.sleep(0)
        self._store._set(reference.path, data, False, kind="add")
        return reference

    def __repr__(self) -> str:
        return f"MemoryCollectionReference({self._path!r})"


class MemoryDocumentStore:
    """A process-local document store. Not shared across processes."""

    def __init__(self, documents: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._documents: dict[str, dict] = {}
        self._changes: EventStream[str] = EventStream()
        self._error_handlers: dict[int, Callable[[Exception], None]] = {}
        self._listener_ids = itertools.count(1)
        self.online = True
        self.operations: list[tuple[str, str, object]] = []
        for path, data in (documents or {}).items():
            self._documents[_normalize(path)] = copy.deepcopy(dict(data))

    # --- handles ---

    def document(self, path: str) -> MemoryDocumentReference:
        if not address_ready(path):
            raise InvalidAddress(path, "not a document path")
        return MemoryDocumentReference(self, _normalize(path))

    def collection(self, path: str) -> MemoryCollectionReference:
        normalized = _normalize(path)
        pieces = normalized.split(SEPARATOR)
        if not normalized or "" in pieces or len(pieces) % 2 == 0:
            raise InvalidAddress(path, "not a collection path")
        return MemoryCollectionReference(self, normalized)

    def new_id(self) -> str:
        return uuid.uuid4().hex[:20]

    # --- connectivity ---

    def go_online(self) -> None:
        self.online = True
        logger.info("Store online")

    def go_offline(self) -> None:
        self.online = False
        logger.info("Store offline")

    # --- inspection ---

    def contents(self, path: str) -> dict | None:
        return copy.deepcopy(self._documents.get(_normalize(path)))

    @property
    def listener_count(self) -> int:
        return len(self._error_handlers)

    def fail_listeners(self, error: Exception) -> None:
        """Deliver error to every live snapshot listener's error callback."""
        for handler in list(self._error_handlers.values()):
            handler(error)

    # --- state changes ---

    def _snapshot(self, path: str) -> MemoryDocumentSnapshot:
        return MemoryDocumentSnapshot(MemoryDocumentReference(self, path), self._documents.get(path))

    def _set(self, path: str, data: Mapping[str, Any], merge: bool, kind: str | None = None) -> None:
        if merge and path in self._documents:
            _deep_merge(self._documents[path], data)
        else:
            self._documents[path] = copy.deepcopy(dict(data))
        kind = kind or ("set-merge" if merge else "set")
        self._record(kind, path, data)

    def _update(self, path: str, data: Mapping[str, Any]) -> None:
        if path not in self._documents:
            raise NotFound(path)
        for key, value in data.items():
            self._documents[path][key] = copy.deepcopy(value)
        self._record("update", path, data)

    def _delete(self, path: str) -> None:
        self._documents.pop(path, None)
        self._record("delete", path, None)

    def _record(self, kind: str, path: str, payload: object) -> None:
        self.operations.append((kind, path, copy.deepcopy(payload)))
        logger.debug("%s %s %r", kind, path, payload)
        self._changes.emit(path)

    def _listen(self, path, on_value, on_error) -> Unsubscribe:
        # Disposing the filter tears down the mapped child with it.
        stream = self._changes.filter(lambda changed: changed == path)
        stream.map(self._snapshot).subscribe(on_value)
        listener_id = next(self._listener_ids)
        self._error_handlers[listener_id] = on_error
        on_value(self._snapshot(path))

        def _unsubscribe() -> None:
            self._error_handlers.pop(listener_id, None)
            stream.dispose()

        return _unsubscribe


class MemoryApp:
    """App handle serving a single MemoryDocumentStore."""

    def __init__(self, store: MemoryDocumentStore | None = None) -> None:
        self.store = store if store is not None else MemoryDocumentStore()

    def document_store(self) -> MemoryDocumentStore:
        return self.store
