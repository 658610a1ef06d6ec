"""Interfaces the mirror needs from a remote document store client.

The shapes follow the async Firestore client: document and collection
handles, coroutine reads and writes, and a callback-based ``on_snapshot``
that returns its own unsubscribe function. ``docmirror.memory`` implements
all of them.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Protocol, runtime_checkable

Unsubscribe = Callable[[], None]


@runtime_checkable
class DocumentSnapshot(Protocol):
    @property
    def exists(self) -> bool: ...

    def to_dict(self) -> dict[str, Any] | None: ...


@runtime_checkable
class DocumentReference(Protocol):
    @property
    def path(self) -> str: ...

    @property
    def id(self) -> str: ...

    async def get(self) -> DocumentSnapshot: ...

    async def set(self, data: Mapping[str, Any], merge: bool = False) -> None: ...

    async def update(self, data: Mapping[str, Any]) -> None: ...

    async def delete(self) -> None: ...

    def on_snapshot(
        self,
        on_value: Callable[[DocumentSnapshot], None],
        on_error: Callable[[Exception], None],
    ) -> Unsubscribe: ...


@runtime_checkable
class CollectionReference(Protocol):
    @property
    def path(self) -> str: ...

    def document(self, key: str | None = None) -> DocumentReference: ...

    async def add(self, data: Mapping[str, Any]) -> DocumentReference: ...


@runtime_checkable
class DocumentStore(Protocol):
    def document(self, path: str) -> DocumentReference: ...

    def collection(self, path: str) -> CollectionReference: ...

    def go_online(self) -> None: ...

    def go_offline(self) -> None: ...


@runtime_checkable
class App(Protocol):
    """Application/session handle that hands out the document store."""

    def document_store(self) -> DocumentStore: ...
