"""Tests for the write side of DocumentMirror."""

import asyncio
import logging

import pytest

from docmirror import (
    DocumentMirror,
    InvalidAddress,
    NoActiveReference,
    NoSessionConfigured,
    RemoteReadFailure,
    RemoteWriteFailure,
    WriteSuperseded,
)
from docmirror.memory import MemoryDocumentReference


class TestSetStoredValue:
    @pytest.mark.asyncio
    async def test_missing_document_is_merge_created(self, app, store):
        mirror = DocumentMirror(app)
        assert await mirror.set_stored_value("/users/u3/age", 30) is True
        assert store.operations == [("set-merge", "users/u3", {"age": 30})]
        assert mirror.is_changed is True

    @pytest.mark.asyncio
    async def test_existing_document_is_updated(self, app, store):
        mirror = DocumentMirror(app)
        await mirror.set_stored_value("/users/u1/age", 30)
        assert store.operations == [("update", "users/u1", {"age": 30})]
        assert store.contents("users/u1") == {"x": 1, "y": 2, "age": 30}

    @pytest.mark.asyncio
    async def test_mapping_value_is_written_as_is(self, app, store):
        mirror = DocumentMirror(app)
        await mirror.set_stored_value("users/u1/profile", {"name": "Ada"})
        assert store.operations == [("update", "users/u1", {"name": "Ada"})]

    @pytest.mark.asyncio
    async def test_none_at_document_address_clears_it(self, app, store):
        mirror = DocumentMirror(app)
        await mirror.set_stored_value("users/u1", None)
        assert store.contents("users/u1") == {}
        assert store.operations == [("set", "users/u1", {})]

    @pytest.mark.asyncio
    async def test_dirty_flag_clears_before_and_sets_after(self, app):
        mirror = DocumentMirror(app)
        await mirror.set_stored_value("users/u1/a", 1)
        assert mirror.is_changed is True
        write = asyncio.ensure_future(mirror.set_stored_value("users/u1/a", 2))
        await asyncio.sleep(0)
        assert mirror.is_changed is False
        await write
        assert mirror.is_changed is True

    @pytest.mark.asyncio
    async def test_overlapping_writes_stay_dirty_until_the_last_commits(self, app):
        mirror = DocumentMirror(app)
        first = asyncio.ensure_future(mirror.set_stored_value("users/u1/a", 1))
        await asyncio.sleep(0)
        second = asyncio.ensure_future(mirror.set_stored_value("users/u2/b", 2))
        await first
        assert not second.done()
        assert mirror.is_changed is False
        await second
        assert mirror.is_changed is True

    @pytest.mark.asyncio
    async def test_failed_write_does_not_hold_the_flag(self, app):
        mirror = DocumentMirror(app)
        with pytest.raises(InvalidAddress):
            await mirror.set_stored_value("", 1)
        assert mirror.is_changed is False
        await mirror.set_stored_value("users/u1/a", 1)
        assert mirror.is_changed is True

    @pytest.mark.asyncio
    async def test_rejected_write_surfaces(self, app, store, monkeypatch):
        def reject(path, data):
            raise PermissionError("denied")

        monkeypatch.setattr(store, "_update", reject)
        mirror = DocumentMirror(app)
        with pytest.raises(RemoteWriteFailure) as excinfo:
            await mirror.set_stored_value("users/u1/age", 30)
        assert isinstance(excinfo.value.__cause__, PermissionError)
        assert excinfo.value.operation == "update"
        assert mirror.is_changed is False

    @pytest.mark.asyncio
    async def test_rejected_read_surfaces(self, app, monkeypatch):
        async def broken_get(self):
            raise ConnectionError("offline")

        monkeypatch.setattr(MemoryDocumentReference, "get", broken_get)
        mirror = DocumentMirror(app)
        with pytest.raises(RemoteReadFailure):
            await mirror.set_stored_value("users/u1/age", 30)
        assert mirror.is_changed is False

    @pytest.mark.asyncio
    async def test_requires_app(self):
        with pytest.raises(NoSessionConfigured):
            await DocumentMirror().set_stored_value("users/u1/age", 1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("address", [None, "", "age", "users//age"])
    async def test_invalid_address(self, app, address):
        with pytest.raises(InvalidAddress):
            await DocumentMirror(app).set_stored_value(address, 1)


class TestSupersededWrites:
    async def _race(self, mirror):
        write = asyncio.ensure_future(mirror.set_stored_value("users/u1/age", 5))
        await asyncio.sleep(0)
        mirror.address = "users/u2"
        return write

    @pytest.mark.asyncio
    async def test_completes_against_old_address_by_default(self, app, store):
        mirror = DocumentMirror(app, "users/u1")
        await (await self._race(mirror))
        assert store.contents("users/u1")["age"] == 5

    @pytest.mark.asyncio
    async def test_cancelled_when_configured(self, app, store):
        mirror = DocumentMirror(app, "users/u1", cancel_superseded_writes=True)
        write = await self._race(mirror)
        with pytest.raises(WriteSuperseded):
            await write
        assert "age" not in store.contents("users/u1")

    @pytest.mark.asyncio
    async def test_writes_elsewhere_are_not_cancelled(self, app, store):
        mirror = DocumentMirror(app, "users/u2", cancel_superseded_writes=True)
        write = asyncio.ensure_future(mirror.set_stored_value("users/u1/age", 5))
        await asyncio.sleep(0)
        mirror.address = "users/u3"
        await write
        assert store.contents("users/u1")["age"] == 5


class TestSaveValue:
    @pytest.mark.asyncio
    async def test_generated_key_becomes_address(self, app, store):
        mirror = DocumentMirror(app)
        mirror.data = {"title": "groceries"}
        assert await mirror.save_value("notes") is True
        kind, path, payload = store.operations[-1]
        assert kind == "add"
        assert mirror.address == path
        assert path.startswith("notes/")
        assert store.contents(path) == {"title": "groceries"}

    @pytest.mark.asyncio
    async def test_key_without_merge_overwrites(self, app, store):
        mirror = DocumentMirror(app)
        mirror.data = {"name": "Ada"}
        await mirror.save_value("users", "u1", merge=False)
        assert store.contents("users/u1") == {"name": "Ada"}
        assert mirror.address == "users/u1"
        assert store.operations == [("set", "users/u1", {"name": "Ada"})]

    @pytest.mark.asyncio
    async def test_key_with_merge_updates(self, app, store):
        mirror = DocumentMirror(app)
        mirror.data = {"name": "Ada"}
        await mirror.save_value("users", "u1")
        assert store.contents("users/u1") == {"x": 1, "y": 2, "name": "Ada"}
        assert mirror.address == "users/u1"
        assert mirror.is_changed is True

    @pytest.mark.asyncio
    async def test_attached_mirror_follows_saved_document(self, app, store):
        with DocumentMirror(app) as mirror:
            mirror.data = {"title": "draft"}
            await mirror.save_value("notes", "n1")
            assert mirror.address == "notes/n1"
            assert mirror.data == {"title": "draft"}
            assert store.listener_count == 1

    @pytest.mark.asyncio
    async def test_requires_app(self):
        with pytest.raises(NoSessionConfigured):
            await DocumentMirror().save_value("notes")


class TestOtherOperations:
    @pytest.mark.asyncio
    async def test_delete_stored_value(self, app, store):
        mirror = DocumentMirror(app)
        assert await mirror.delete_stored_value("/users/u2") is True
        assert store.contents("users/u2") is None

    @pytest.mark.asyncio
    async def test_delete_needs_document_address(self, app):
        with pytest.raises(InvalidAddress):
            await DocumentMirror(app).delete_stored_value("users/u2/name")

    @pytest.mark.asyncio
    async def test_get_stored_value(self, app):
        mirror = DocumentMirror(app)
        assert await mirror.get_stored_value("users/u2") == {"name": "Grace"}
        assert await mirror.get_stored_value("users/missing") == {}

    @pytest.mark.asyncio
    async def test_destroy_then_reset(self, app, store):
        with DocumentMirror(app, "users/u1") as mirror:
            await mirror.destroy()
            mirror.reset()
            assert mirror.address is None
            assert mirror.data == {}
            assert store.contents("users/u1") == {}
            assert store.listener_count == 0

    @pytest.mark.asyncio
    async def test_set_and_update_data(self, app, store):
        mirror = DocumentMirror(app, "users/u2")
        await mirror.set_data({"a": 1})
        await mirror.set_data({"b": 2}, merge=True)
        await mirror.update_data({"a": 3})
        assert store.contents("users/u2") == {"a": 3, "b": 2}

    @pytest.mark.asyncio
    async def test_pass_through_needs_reference(self, app):
        mirror = DocumentMirror(app, "users/u2", disabled=True)
        with pytest.raises(NoActiveReference):
            await mirror.set_data({"a": 1})
        with pytest.raises(NoActiveReference):
            await mirror.update_data({"a": 1})

    def test_path_translation_uses_current_address(self, app):
        mirror = DocumentMirror(app, "users/u1")
        assert mirror.memory_path_to_storage_path("data.age") == "users/u1/age"
        assert mirror.storage_path_to_memory_path("users/u1/age") == "data.age"

    def test_path_translation_with_leading_separator(self, app):
        mirror = DocumentMirror(app, "/users/u1")
        assert mirror.storage_path_to_memory_path(mirror.reference.path + "/age") == "data.age"
        assert mirror.storage_path_to_memory_path("users/u10/age") == "data.users.u10.age"


class TestWriteBack:
    @pytest.mark.asyncio
    async def test_field_change_is_written(self, app, store):
        with DocumentMirror(app, "users/u1") as mirror:
            mirror.set_path("data.y", 20)
            await mirror.flush()
            assert store.operations == [("update", "users/u1", {"y": 20})]
            assert mirror.is_changed is True

    @pytest.mark.asyncio
    async def test_nested_change_writes_its_field(self, app, store):
        with DocumentMirror(app, "users/u1") as mirror:
            mirror.set_path("data.profile.name", "Ada")
            await mirror.flush()
            assert store.contents("users/u1")["profile"] == {"name": "Ada"}

    @pytest.mark.asyncio
    async def test_whole_data_is_written(self, app, store):
        with DocumentMirror(app, "users/u3") as mirror:
            mirror.data = {"fresh": True}
            await mirror.flush()
            assert store.operations == [("set-merge", "users/u3", {"fresh": True})]
            assert mirror.data == {"fresh": True}

    @pytest.mark.asyncio
    async def test_skipped_without_document_address(self, app, store):
        mirror = DocumentMirror(app, "users")
        mirror.data = {"a": 1}
        assert mirror.pending_writes == 0
        await mirror.flush()
        assert store.operations == []

    @pytest.mark.asyncio
    async def test_flush_reraises_failures(self, app, store, monkeypatch, caplog):
        def reject(path, data):
            raise PermissionError("denied")

        monkeypatch.setattr(store, "_update", reject)
        with DocumentMirror(app, "users/u1") as mirror:
            with caplog.at_level(logging.ERROR, logger="docmirror.document"):
                mirror.set_path("data.x", 0)
                with pytest.raises(RemoteWriteFailure):
                    await mirror.flush()
            assert "Background write failed" in caplog.text
            await mirror.flush()

    @pytest.mark.asyncio
    async def test_flush_keeps_only_the_first_failure(self, app, store, monkeypatch, caplog):
        def reject(path, data):
            raise PermissionError(sorted(data))

        monkeypatch.setattr(store, "_update", reject)
        with DocumentMirror(app, "users/u1") as mirror:
            with caplog.at_level(logging.ERROR, logger="docmirror.document"):
                mirror.set_path("data.x", 0)
                mirror.set_path("data.y", 0)
                mirror.set_path("data.z", 0)
                with pytest.raises(RemoteWriteFailure) as excinfo:
                    await mirror.flush()
            assert excinfo.value.__cause__.args == (["x"],)
            assert caplog.text.count("Background write failed") == 3
            assert mirror._first_failure is None

    def test_no_event_loop_is_logged(self, app, store, caplog):
        mirror = DocumentMirror(app, "users/u1")
        with caplog.at_level(logging.WARNING, logger="docmirror.document"):
            mirror.data = {"a": 1}
        assert "was not persisted" in caplog.text
        assert store.operations == []
