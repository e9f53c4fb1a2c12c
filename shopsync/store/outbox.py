"""Outbox (pending changes) transitions.

Every function takes a PendingChanges and returns a new one. Upsert
partitions are keyed: queueing a diff for a key that is already queued
replaces the older diff in place of appending a second one.

Acknowledgement is identity based: only the exact diffs that went out in a
push are removed. A diff that was replaced while the request was in flight
compares unequal to the sent copy and stays queued for the next push, and a
deletion queued again carries a newer tombstone than the one that was sent.
"""

import dataclasses
import logging
from typing import Callable, Dict, Iterable, Optional, Tuple, TypeVar

from ..types import (
    Bookmark,
    CartSession,
    Collection,
    HistoryEntry,
    PendingChanges,
    SyncMetadata,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def upsert_keyed(items: Tuple[T, ...], item: T, key_fn: Callable[[T], str]) -> Tuple[T, ...]:
    """Replace the entry sharing *item*'s key, or append."""
    key = key_fn(item)
    return tuple(i for i in items if key_fn(i) != key) + (item,)


def drop_keyed(items: Tuple[T, ...], key: str, key_fn: Callable[[T], str]) -> Tuple[T, ...]:
    return tuple(i for i in items if key_fn(i) != key)


def cap_oldest(items: Tuple[T, ...], max_entries: int, label: str) -> Tuple[T, ...]:
    """Keep the newest *max_entries* of an append-ordered buffer."""
    if len(items) <= max_entries:
        return items
    dropped = len(items) - max_entries
    logger.warning(f"{label} buffer over limit ({max_entries}); dropping {dropped} oldest entries")
    return items[dropped:]


def _bookmark_key(b: Bookmark) -> str:
    return b.url


def _collection_key(c: Collection) -> str:
    return c.id


def _history_key(h: HistoryEntry) -> str:
    return h.url


def _cart_key(s: CartSession) -> str:
    return s.cart_url


# === Queueing ===


def queue_bookmark(pending: PendingChanges, bookmark: Bookmark) -> PendingChanges:
    return dataclasses.replace(
        pending,
        bookmarks=upsert_keyed(pending.bookmarks, bookmark, _bookmark_key),
        deleted_bookmark_urls=tuple(u for u in pending.deleted_bookmark_urls if u != bookmark.url),
    )


def queue_bookmark_deletion(pending: PendingChanges, url: str) -> PendingChanges:
    deleted = pending.deleted_bookmark_urls
    if url not in deleted:
        deleted = deleted + (url,)
    return dataclasses.replace(
        pending,
        bookmarks=drop_keyed(pending.bookmarks, url, _bookmark_key),
        deleted_bookmark_urls=deleted,
    )


def queue_history(pending: PendingChanges, entry: HistoryEntry) -> PendingChanges:
    return dataclasses.replace(pending, history=upsert_keyed(pending.history, entry, _history_key))


def drop_history(pending: PendingChanges) -> PendingChanges:
    return dataclasses.replace(pending, history=())


def queue_collection(pending: PendingChanges, collection: Collection) -> PendingChanges:
    return dataclasses.replace(
        pending,
        collections=upsert_keyed(pending.collections, collection, _collection_key),
        deleted_collection_ids=tuple(
            i for i in pending.deleted_collection_ids if i != collection.id
        ),
    )


def queue_collection_deletion(pending: PendingChanges, collection_id: str) -> PendingChanges:
    deleted = pending.deleted_collection_ids
    if collection_id not in deleted:
        deleted = deleted + (collection_id,)
    return dataclasses.replace(
        pending,
        collections=drop_keyed(pending.collections, collection_id, _collection_key),
        deleted_collection_ids=deleted,
    )


def queue_cart_session(
    pending: PendingChanges, session: CartSession, max_entries: int
) -> PendingChanges:
    sessions = upsert_keyed(pending.cart_history, session, _cart_key)
    return dataclasses.replace(
        pending, cart_history=cap_oldest(sessions, max_entries, "Pending cart")
    )


def drop_analytics(pending: PendingChanges) -> PendingChanges:
    """Forget queued history and cart diffs (consent withdrawn or data wiped)."""
    return dataclasses.replace(pending, history=(), cart_history=())


# === Acknowledgement ===


def _without_sent(
    items: Tuple[T, ...], sent: Iterable[T], key_fn: Callable[[T], str]
) -> Tuple[T, ...]:
    sent_by_key = {key_fn(i): i for i in sent}
    if not sent_by_key:
        return items
    return tuple(i for i in items if sent_by_key.get(key_fn(i)) != i)


def _deletions_without_sent(
    keys: Tuple[str, ...],
    sent: Iterable[str],
    sent_tombstones: Optional[Dict[str, int]],
    tombstones: Optional[Dict[str, int]],
) -> Tuple[str, ...]:
    sent_keys = set(sent)
    if not sent_keys:
        return keys
    if sent_tombstones is None or tombstones is None:
        return tuple(k for k in keys if k not in sent_keys)
    return tuple(
        k for k in keys if k not in sent_keys or tombstones.get(k) != sent_tombstones.get(k)
    )


def acknowledge(
    pending: PendingChanges,
    sent: PendingChanges,
    *,
    sent_meta: Optional[SyncMetadata] = None,
    meta: Optional[SyncMetadata] = None,
) -> PendingChanges:
    """Remove exactly the diffs in *sent* from *pending*.

    Upserts are matched by key and value. Deletions are matched by key and,
    when both metadata snapshots are given, by tombstone time: a key deleted
    again after the push was captured stays queued.
    """
    sent_bookmark_marks = sent_meta.bookmark_tombstones if sent_meta else None
    sent_collection_marks = sent_meta.collection_tombstones if sent_meta else None
    bookmark_marks = meta.bookmark_tombstones if meta else None
    collection_marks = meta.collection_tombstones if meta else None
    acked = dataclasses.replace(
        pending,
        bookmarks=_without_sent(pending.bookmarks, sent.bookmarks, _bookmark_key),
        deleted_bookmark_urls=_deletions_without_sent(
            pending.deleted_bookmark_urls,
            sent.deleted_bookmark_urls,
            sent_bookmark_marks,
            bookmark_marks,
        ),
        history=_without_sent(pending.history, sent.history, _history_key),
        collections=_without_sent(pending.collections, sent.collections, _collection_key),
        deleted_collection_ids=_deletions_without_sent(
            pending.deleted_collection_ids,
            sent.deleted_collection_ids,
            sent_collection_marks,
            collection_marks,
        ),
        cart_history=_without_sent(pending.cart_history, sent.cart_history, _cart_key),
    )
    if acked != pending:
        remaining = sum(acked.counts().values())
        logger.debug(f"Acknowledged push; {remaining} pending entries remain")
    return acked
