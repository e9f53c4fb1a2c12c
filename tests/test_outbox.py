"""Tests for outbox transitions and push acknowledgement."""

import dataclasses

from shopsync.store import outbox
from shopsync.types import Collection, HistoryEntry, PendingChanges, SyncMetadata

from conftest import make_bookmark


class TestQueueing:
    def test_one_diff_per_key(self):
        first = make_bookmark(title="v1")
        second = make_bookmark(title="v2")
        pending = outbox.queue_bookmark(outbox.queue_bookmark(PendingChanges(), first), second)

        assert pending.bookmarks == (second,)

    def test_deletion_cancels_queued_upsert(self):
        b = make_bookmark()
        pending = outbox.queue_bookmark_deletion(outbox.queue_bookmark(PendingChanges(), b), b.url)

        assert pending.bookmarks == ()
        assert pending.deleted_bookmark_urls == (b.url,)

    def test_readd_cancels_queued_deletion(self):
        b = make_bookmark()
        pending = outbox.queue_bookmark(outbox.queue_bookmark_deletion(PendingChanges(), b.url), b)

        assert pending.deleted_bookmark_urls == ()
        assert pending.bookmarks == (b,)

    def test_deletion_recorded_once(self):
        pending = outbox.queue_collection_deletion(PendingChanges(), "c1")
        pending = outbox.queue_collection_deletion(pending, "c1")
        assert pending.deleted_collection_ids == ("c1",)


class TestAcknowledge:
    def test_removes_exactly_what_was_sent(self):
        h1 = HistoryEntry(url="https://a.example.com/1", title="A", source="A", visited_at=1)
        c1 = Collection(id="c1", name="Summer")
        sent = PendingChanges(history=(h1,), collections=(c1,), deleted_bookmark_urls=("https://x.example.com",))

        assert outbox.acknowledge(sent, sent).is_empty()

    def test_replaced_diff_stays_queued(self):
        """A diff rewritten during the push differs from the sent copy."""
        sent_entry = HistoryEntry(url="https://a.example.com/1", title="A", source="A", visited_at=1)
        newer = dataclasses.replace(sent_entry, visit_count=2, visited_at=5)
        sent = PendingChanges(history=(sent_entry,))
        current = outbox.queue_history(sent, newer)

        assert outbox.acknowledge(current, sent).history == (newer,)

    def test_items_added_after_snapshot_survive(self):
        b1 = make_bookmark("https://shop.example.com/p/1")
        b2 = make_bookmark("https://shop.example.com/p/2")
        sent = PendingChanges(bookmarks=(b1,))
        current = outbox.queue_bookmark(sent, b2)

        assert outbox.acknowledge(current, sent).bookmarks == (b2,)

    def test_empty_ack_is_noop(self):
        pending = PendingChanges(deleted_collection_ids=("c1",))
        assert outbox.acknowledge(pending, PendingChanges()) == pending

    def test_large_push_acknowledged_by_key(self):
        bookmarks = tuple(make_bookmark(f"https://shop.example.com/p/{i}") for i in range(2000))
        sent = PendingChanges(bookmarks=bookmarks)
        late = make_bookmark("https://shop.example.com/p/late")
        current = outbox.queue_bookmark(sent, late)

        assert outbox.acknowledge(current, sent).bookmarks == (late,)

    def test_deletion_repeated_during_push_stays_queued(self):
        url = "https://shop.example.com/p/1"
        sent = PendingChanges(deleted_bookmark_urls=(url,))
        sent_meta = SyncMetadata(bookmark_tombstones={url: 1000})
        meta = SyncMetadata(bookmark_tombstones={url: 2000})

        acked = outbox.acknowledge(sent, sent, sent_meta=sent_meta, meta=meta)
        assert acked.deleted_bookmark_urls == (url,)

    def test_deletion_with_same_tombstone_acknowledged(self):
        sent = PendingChanges(deleted_collection_ids=("c1",))
        meta = SyncMetadata(collection_tombstones={"c1": 1000})

        assert outbox.acknowledge(sent, sent, sent_meta=meta, meta=meta).is_empty()


class TestCapOldest:
    def test_under_limit_unchanged(self):
        items = (1, 2, 3)
        assert outbox.cap_oldest(items, 3, "Test") is items

    def test_keeps_newest(self, caplog):
        assert outbox.cap_oldest((1, 2, 3, 4, 5), 2, "Test") == (4, 5)
        assert "Test buffer over limit (2); dropping 3 oldest entries" in caplog.text
