"""DocumentMirror — a local, reactive copy of one remote document.

The mirror owns a handful of observables (``app``, ``address``, ``disabled``,
``online``, ``data``, ``is_changed``) and two derived values:

    database  = app.document_store() if app else None
    reference = database.document(address)   # None unless the address is
                                              # ready, an app is set, and the
                                              # mirror is not disabled

While attached, a reaction on ``reference`` swaps the snapshot listener
whenever the reference changes. Each snapshot is diffed against ``data`` (see
``docmirror.merge``) and applied in one batched step pushed through the
scheduler. Changes the consumer makes to ``data`` go the other way: they are
translated to a storage address and written back as background tasks.

Usage:
    app = MemoryApp()
    with DocumentMirror(app, "/users/u1") as user:
        await user.set_stored_value("/users/u1/age", 30)
        user.data  # {"age": 30}
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Mapping
from contextlib import contextmanager
from typing import Any

from docmirror import path as _path
from docmirror._tracking import Scheduler, defer
from docmirror.action import action, transaction
from docmirror.computed import Computed
from docmirror.errors import (
    InvalidAddress,
    NoActiveReference,
    NoSessionConfigured,
    RemoteReadFailure,
    RemoteWriteFailure,
    WriteSuperseded,
)
from docmirror.merge import plan_merge
from docmirror.observable import Observable
from docmirror.reaction import Reaction, reaction
from docmirror.remote import App, DocumentReference, DocumentSnapshot, DocumentStore
from docmirror.subscription import Subscription

logger = logging.getLogger("docmirror.document")


class DocumentMirror:
    """Keeps ``data`` and the document at ``address`` consistent in both directions."""

    def __init__(
        self,
        app: App | None = None,
        address: str | None = None,
        *,
        disabled: bool = False,
        online: bool = True,
        scheduler: Scheduler | None = None,
        cancel_superseded_writes: bool = False,
    ) -> None:
        self._app = Observable(app)
        self._address: Observable[str | None] = Observable(address)
        self._disabled = Observable(bool(disabled))
        self._online = Observable(bool(online))
        self._data: Observable[Any] = Observable(self.zero_value)
        self._is_changed = Observable(False)
        self._last_error: Observable[Exception | None] = Observable(None)

        self._database = Computed(self._compute_database)
        self._reference = Computed(self._compute_reference)

        self._subscription = Subscription()
        self._reactions: list[Reaction] = []
        self._need_set_data = True
        self._generation = 0
        self._sync_depth = 0
        self._writes: set[asyncio.Task] = set()
        self._writes_in_flight = 0
        self._first_failure: BaseException | None = None
        self._released = False
        self._scheduler = scheduler
        self.cancel_superseded_writes = cancel_superseded_writes

        self._data.subscribe(self._on_local_change)

    # --- observable properties ---

    @property
    def app(self) -> App | None:
        return self._app.get()

    @app.setter
    def app(self, value: App | None) -> None:
        self._app.set(value)

    @property
    def address(self) -> str | None:
        return self._address.get()

    @address.setter
    def address(self, value: str | None) -> None:
        self._set_address(value)

    @property
    def disabled(self) -> bool:
        return self._disabled.get()

    @disabled.setter
    def disabled(self, value: bool) -> None:
        self._disabled.set(bool(value))

    @property
    def online(self) -> bool:
        return self._online.get()

    @online.setter
    def online(self, value: bool) -> None:
        self._online.set(bool(value))

    @property
    def data(self) -> Any:
        return self._data.get()

    @data.setter
    def data(self, value: Any) -> None:
        self._data.set(value)

    @property
    def is_changed(self) -> bool:
        """True once the last remote write committed; False while one is in flight."""
        return self._is_changed.get()

    @property
    def last_error(self) -> Exception | None:
        return self._last_error.get()

    @property
    def database(self) -> DocumentStore | None:
        return self._database.get()

    @property
    def reference(self) -> DocumentReference | None:
        return self._reference.get()

    @property
    def generation(self) -> int:
        """Bumped on every address change."""
        return self._generation

    @property
    def zero_value(self) -> dict:
        return {}

    @property
    def is_new(self) -> bool:
        return self._disabled.peek() or not _path.address_ready(self._address.peek())

    @property
    def attached(self) -> bool:
        return bool(self._reactions)

    @property
    def pending_writes(self) -> int:
        return len(self._writes)

    # --- derivations ---

    def _compute_database(self) -> DocumentStore | None:
        app = self._app.get()
        return app.document_store() if app is not None else None

    def _compute_reference(self) -> DocumentReference | None:
        database = self._database.get()
        address = self._address.get()
        disabled = self._disabled.get()
        if database is None or address is None or not _path.address_ready(address) or disabled:
            return None
        return database.document(address)

    # --- lifecycle ---

    def attach(self) -> DocumentMirror:
        """Start following the reference and (re)subscribe to it."""
        self._dispose_reactions()
        self._need_set_data = True
        self._reactions = [
            reaction(self._reference.get, self._reference_changed),
            reaction(self._online.get, self._online_changed),
        ]
        self._reference_changed(self._reference.get(), None)
        return self

    def detach(self) -> None:
        """Stop reacting to input changes and drop the snapshot listener."""
        self._dispose_reactions()
        self._subscription.close()

    def dispose(self) -> None:
        """Detach and release every reactive handle the mirror owns.

        Unlike ``detach`` this is final. Background write-backs still running
        are cancelled; ``await flush()`` first to keep them. Snapshots queued
        on the scheduler are dropped.
        """
        if self._released:
            return
        address = self._address.peek()
        self.detach()
        for task in list(self._writes):
            task.cancel()
        self._generation += 1
        self._released = True
        self._reference.dispose()
        self._database.dispose()
        for observable in (self._app, self._address, self._disabled, self._online,
                           self._data, self._is_changed, self._last_error):
            observable.dispose()
        logger.debug("Disposed mirror of %s", address)

    def _dispose_reactions(self) -> None:
        for r in self._reactions:
            r.dispose()
        self._reactions = []

    def __enter__(self) -> DocumentMirror:
        return self.attach()

    def __exit__(self, *exc_info) -> None:
        self.detach()

    # --- transitions ---

    def _reference_changed(
        self, reference: DocumentReference | None, previous: DocumentReference | None
    ) -> None:
        if reference is not None:
            self._need_set_data = True
        self._subscription.replace(reference, self._on_snapshot, self._on_error)

    def _online_changed(self, online: bool, previous: bool | None) -> None:
        if self._reference.get() is None:
            return
        database = self._database.get()
        if online:
            database.go_online()
        else:
            database.go_offline()

    @action
    def _set_address(self, value: str | None) -> None:
        previous = self._address.peek()
        if value == previous:
            return
        if _path.same_document(value, previous):
            # "/a/b" and "a/b": same reference, nothing to resync.
            self._address.set(value)
            return
        self._generation += 1
        if not self._disabled.peek() and self._data.peek():
            with self._sync_to_memory():
                self._data.set(self.zero_value)
            self._need_set_data = True
        self._address.set(value)

    @contextmanager
    def _sync_to_memory(self):
        """Batch mutations coming from the store; they are not written back."""
        with transaction():
            self._sync_depth += 1
            try:
                yield
            finally:
                self._sync_depth -= 1

    # --- remote -> local ---

    def _on_snapshot(self, snapshot: DocumentSnapshot) -> None:
        value = snapshot.to_dict() if snapshot.exists else None
        if value is None:
            value = self.zero_value
            self._need_set_data = True

        if self.is_new:
            return

        generation = self._generation
        defer(lambda: self._apply_snapshot(value, generation), self._scheduler)

    def _apply_snapshot(self, value, generation: int) -> None:
        if generation != self._generation:
            logger.debug("Dropping snapshot from generation %d; now at %d", generation, self._generation)
            return
        with self._sync_to_memory():
            plan = plan_merge(self._data.peek(), value, force_replace=self._need_set_data)
            if plan.replace:
                logger.debug("Replacing data at %s with %r", self._address.peek(), value)
                self._need_set_data = False
                self._data.set(value)
                return
            for key, item in plan.patches:
                logger.debug("Patching data.%s at %s", key, self._address.peek())
                self._data.set_path((key,), item)

    def _on_error(self, error: Exception) -> None:
        logger.error("Snapshot listener for %s failed: %s", self._address.peek(), error)
        self._last_error.set(error)

    # --- local -> remote ---

    def set_path(self, memory_path: str, value: Any) -> None:
        """Set ``data.<a>.<b>`` locally; the change is written back like any other."""
        self._data.set_path(_path.memory_path_segments(memory_path), value)

    def _on_local_change(self, path: tuple[str, ...], value: Any) -> None:
        if self._sync_depth:
            return
        if self.is_new:
            logger.debug("Not persisting local change to data%s: no document address",
                         "".join("." + p for p in path))
            return
        storage_path = self.memory_path_to_storage_path(_path.MEMORY_ROOT)
        if path:
            # Top-level fields are written whole; nested keys travel with their field.
            key = path[0]
            value = {key: self._data.peek().get(key)}
        self._schedule_write(storage_path, copy.deepcopy(value))

    def _schedule_write(self, storage_path: str, value: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; change at %s was not persisted", storage_path)
            return
        task = loop.create_task(self.set_stored_value(storage_path, value))
        self._writes.add(task)
        task.add_done_callback(self._write_done)

    def _write_done(self, task: asyncio.Task) -> None:
        self._writes.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Background write failed: %s", error)
            if self._first_failure is None:
                self._first_failure = error

    async def flush(self) -> None:
        """Wait for background write-backs.

        Re-raises the first failure since the previous flush; later ones are
        only logged.
        """
        while self._writes:
            await asyncio.gather(*self._writes, return_exceptions=True)
        failure, self._first_failure = self._first_failure, None
        if failure is not None:
            raise failure

    # --- write coordinator ---

    def _require_database(self, operation: str) -> DocumentStore:
        database = self._database.get()
        if database is None:
            raise NoSessionConfigured(operation)
        return database

    def _document_address(self, address: str | None) -> str:
        resolved = _path.resolve(address)
        if resolved.field is not None:
            raise InvalidAddress(address, "not a document address")
        return resolved.document_address

    def _is_current(self, document_address: str) -> bool:
        current = self._address.peek()
        if not _path.address_ready(current):
            return False
        return _path.resolve(current).document_address == document_address

    async def set_stored_value(self, address: str | None, value: Any) -> bool:
        """Write value at address, creating the document when it is missing.

        A field address (odd segment count) with a non-mapping value writes
        ``{field: value}``. ``None`` at a document address clears the
        document. Existing documents are updated with just the given keys;
        missing ones are created with a merge write.

        ``is_changed`` is cleared when the write starts. It is set again only
        when no other write is still in flight and the one finishing last
        committed.
        """
        logger.debug("Setting stored value at %s to %r", address, value)
        self._writes_in_flight += 1
        self._is_changed.set(False)
        committed = False
        try:
            await self._write_stored_value(address, value)
            committed = True
        finally:
            self._writes_in_flight -= 1
            if committed and not self._writes_in_flight and not self._released:
                self._is_changed.set(True)
        return True

    async def _write_stored_value(self, address: str | None, value: Any) -> None:
        resolved = _path.resolve(address)
        database = self._require_database("set_stored_value")

        clear = value is None and resolved.field is None
        if resolved.field is not None and not isinstance(value, Mapping):
            payload = {resolved.field: value}
        elif clear:
            payload = self.zero_value
        else:
            payload = value

        document_address = resolved.document_address
        reference = database.document(document_address)
        bound = self._generation if self._is_current(document_address) else None

        if clear:
            operation, write = "set", reference.set(payload)
        else:
            try:
                snapshot = await reference.get()
            except Exception as err:
                raise RemoteReadFailure(document_address) from err
            if (
                self.cancel_superseded_writes
                and bound is not None
                and bound != self._generation
            ):
                raise WriteSuperseded(document_address)
            if snapshot.exists:
                operation, write = "update", reference.update(payload)
            else:
                operation, write = "set", reference.set(payload, merge=True)

        try:
            await write
        except Exception as err:
            raise RemoteWriteFailure(document_address, operation) from err

    async def save_value(self, parent_address: str, key: str | None = None, merge: bool = True) -> bool:
        """Write ``data`` to a new location and make it the mirror's address.

        Without key a document with a generated id is added under
        parent_address. With key and ``merge=False`` the document at
        ``parent_address/key`` is overwritten; with ``merge=True`` it goes
        through set_stored_value.

        The address is adopted after the write starts, so it may change
        while the write is still in flight.
        """
        if self._app.peek() is None:
            raise NoSessionConfigured("save_value")
        database = self._require_database("save_value")
        data = copy.deepcopy(self._data.peek())

        if key is None:
            try:
                reference = await database.collection(parent_address).add(data)
            except Exception as err:
                raise RemoteWriteFailure(parent_address, "add") from err
            self.address = reference.path
            return True

        address = _path.join(parent_address, key)
        if not merge:
            write = asyncio.ensure_future(database.collection(parent_address).document(key).set(data))
            self.address = address
            try:
                await write
            except Exception as err:
                raise RemoteWriteFailure(address, "set") from err
            return True

        write = asyncio.ensure_future(self.set_stored_value(address, data))
        self.address = address
        return await write

    async def delete_stored_value(self, address: str) -> bool:
        document_address = self._document_address(address)
        database = self._require_database("delete_stored_value")
        try:
            await database.document(document_address).delete()
        except Exception as err:
            raise RemoteWriteFailure(document_address, "delete") from err
        return True

    async def get_stored_value(self, address: str) -> Any:
        """Read the document at address once. Missing documents read as ``{}``."""
        document_address = self._document_address(address)
        database = self._require_database("get_stored_value")
        try:
            snapshot = await database.document(document_address).get()
        except Exception as err:
            logger.error("Reading %s failed: %s", document_address, err)
            raise RemoteReadFailure(document_address) from err
        value = snapshot.to_dict() if snapshot.exists else None
        return self.zero_value if value is None else value

    async def destroy(self) -> None:
        """Clear the remote document, then forget the address."""
        await self.set_stored_value(self._address.peek(), None)
        self.reset()

    def reset(self) -> None:
        self.address = None

    async def set_data(self, data: Mapping[str, Any], merge: bool = False) -> None:
        reference = self._active_reference("set_data")
        try:
            await reference.set(data, merge=merge)
        except Exception as err:
            raise RemoteWriteFailure(reference.path, "set") from err

    async def update_data(self, data: Mapping[str, Any]) -> None:
        reference = self._active_reference("update_data")
        try:
            await reference.update(data)
        except Exception as err:
            raise RemoteWriteFailure(reference.path, "update") from err

    def _active_reference(self, operation: str) -> DocumentReference:
        reference = self._reference.get()
        if reference is None:
            raise NoActiveReference(f"{operation} needs an active reference")
        return reference

    # --- path translation ---

    def memory_path_to_storage_path(self, path: str) -> str:
        return _path.memory_path_to_storage_path(self._address.peek() or "", path)

    def storage_path_to_memory_path(self, storage_path: str) -> str:
        return _path.storage_path_to_memory_path(self._address.peek() or "", storage_path)

    def __repr__(self) -> str:
        if self._released:
            return "DocumentMirror(disposed)"
        state = "attached" if self.attached else "detached"
        return f"DocumentMirror({self._address.peek()!r}, {state})"
