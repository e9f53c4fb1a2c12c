"""Tests for LocalStore collection operations."""

import uuid

import pytest

from shopsync.types import DEFAULT_COLLECTION_COLOR


class TestCreateCollection:
    def test_create_defaults(self, store, clock):
        c = store.create_collection("Summer")

        assert uuid.UUID(c.id)
        assert c.color == DEFAULT_COLLECTION_COLOR
        assert c.created_at == c.updated_at == clock.now
        assert store.collections == (c,)
        assert store.pending_changes.collections == (c,)

    def test_newest_first(self, store):
        a = store.create_collection("A")
        b = store.create_collection("B")
        assert [c.id for c in store.collections] == [b.id, a.id]

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_empty_name_rejected(self, store, name):
        with pytest.raises(ValueError):
            store.create_collection(name)
        assert store.collections == ()


class TestDeleteCollection:
    def test_delete_tombstones(self, store, clock):
        c = store.create_collection("Summer")
        clock.advance(10)
        assert store.delete_collection(c.id) is True

        assert store.collections == ()
        assert store.pending_changes.collections == ()
        assert store.pending_changes.deleted_collection_ids == (c.id,)
        assert store.state.meta.collection_tombstones == {c.id: clock.now}

    def test_delete_unknown_is_noop(self, store):
        assert store.delete_collection("missing") is False


class TestCollectionItems:
    def test_add_and_remove_item(self, store, bookmark, clock):
        c = store.create_collection("Summer")
        clock.advance(100)
        store.add_item_to_collection(c.id, bookmark("https://shop.example.com/p/1?x=1"))

        updated = store.collections[0]
        assert [i.url for i in updated.items] == ["https://shop.example.com/p/1"]
        assert updated.updated_at == clock.now
        assert store.pending_changes.collections == (updated,)

        clock.advance(100)
        assert store.remove_item_from_collection(c.id, "https://shop.example.com/p/1") is True
        assert store.collections[0].items == ()

    def test_duplicate_item_is_noop(self, store, bookmark):
        c = store.create_collection("Summer")
        store.add_item_to_collection(c.id, bookmark())
        assert store.add_item_to_collection(c.id, bookmark()) is False
        assert len(store.collections[0].items) == 1

    def test_remove_missing_item_is_noop(self, store):
        c = store.create_collection("Summer")
        assert store.remove_item_from_collection(c.id, "https://shop.example.com/none") is False

    def test_update_collection(self, store, clock):
        c = store.create_collection("Summer")
        clock.advance(5)
        store.update_collection(c.id, name="Summer 2025", color="#ff0000")

        updated = store.collections[0]
        assert updated.name == "Summer 2025"
        assert updated.color == "#ff0000"
        assert updated.updated_at == clock.now

    def test_update_rejects_unknown_fields(self, store):
        c = store.create_collection("Summer")
        with pytest.raises(ValueError):
            store.update_collection(c.id, id="other")
        with pytest.raises(ValueError, match="collection_id"):
            store.update_collection(c.id, collection_id="other")
