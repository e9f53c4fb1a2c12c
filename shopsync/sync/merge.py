"""
Reconcile a server snapshot with the local store state.

The server is authoritative for what it knows, except where the device holds
something the server has not seen yet:

- a key with a queued upsert keeps the local copy;
- a key with a queued deletion, or a retained tombstone newer than the
  snapshot, is never reintroduced;
- history and cart timelines cleared after the snapshot was taken stay
  cleared.

Rules are table driven (``MERGE_RULES``) in the same spirit as the array
field merge table of the sync engine: one entry per entity kind naming how
records are keyed and how a local/server pair folds into one record.

Merging is idempotent: applying the same snapshot twice yields the state the
first application produced.
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

from ..types import CartSession, HistoryEntry, ServerSnapshot, StoreState, Tab

logger = logging.getLogger(__name__)


def server_wins(local: Any, server: Any, pinned: bool) -> Any:
    return local if pinned else server


def _first_set(primary: Any, fallback: Any) -> Any:
    return primary if primary is not None else fallback


def merge_history_entry(local: HistoryEntry, server: HistoryEntry, pinned: bool) -> HistoryEntry:
    """Field-wise merge: counts and timestamps only move forward."""
    primary, fallback = (local, server) if pinned else (server, local)
    return dataclasses.replace(
        primary,
        title=primary.title or fallback.title,
        source=primary.source or fallback.source,
        visit_count=max(local.visit_count, server.visit_count),
        visited_at=max(local.visited_at, server.visited_at),
        session_id=_first_set(primary.session_id, fallback.session_id),
        dwell_time=_first_set(primary.dwell_time, fallback.dwell_time),
        scroll_depth=_first_set(primary.scroll_depth, fallback.scroll_depth),
        brand=_first_set(primary.brand, fallback.brand),
        is_cart_page=primary.is_cart_page or fallback.is_cart_page,
    )


def merge_tab(local: Tab, server: Tab, pinned: bool) -> Tab:
    """Server tab metadata; the screenshot only ever exists on this device."""
    return dataclasses.replace(server, screenshot=_first_set(local.screenshot, server.screenshot))


@dataclass(frozen=True)
class MergeRule:
    """How one entity kind is keyed and folded.

    ``local_first`` places local-only records ahead of server records, for
    lists the UI shows newest first.
    """

    key_fn: Callable[[Any], str]
    merge_fn: Callable[[Any, Any, bool], Any]
    local_first: bool = False


MERGE_RULES: Dict[str, MergeRule] = {
    "bookmarks": MergeRule(key_fn=lambda b: b.url, merge_fn=server_wins, local_first=True),
    "collections": MergeRule(key_fn=lambda c: c.id, merge_fn=server_wins, local_first=True),
    "cart_history": MergeRule(key_fn=lambda s: s.cart_url, merge_fn=server_wins),
    "history": MergeRule(key_fn=lambda h: h.url, merge_fn=merge_history_entry),
    "tabs": MergeRule(key_fn=lambda t: t.id, merge_fn=merge_tab),
}


def keyed_union(
    local: Sequence[Any],
    server: Sequence[Any],
    rule: MergeRule,
    *,
    pinned: FrozenSet[str] = frozenset(),
    excluded: FrozenSet[str] = frozenset(),
) -> Tuple[Any, ...]:
    """Union two keyed lists.

    Server records whose key is *excluded* are skipped. Keys on both sides
    fold through ``rule.merge_fn``; keys in *pinned* tell it the local side
    holds unsynced edits.
    """
    local_by_key = {rule.key_fn(item): item for item in local}
    server_by_key: Dict[str, Any] = {}
    for item in server:
        key = rule.key_fn(item)
        if key in excluded:
            continue
        server_by_key[key] = item

    merged_server = []
    for key, item in server_by_key.items():
        mine = local_by_key.get(key)
        merged_server.append(item if mine is None else rule.merge_fn(mine, item, key in pinned))
    local_only = [item for item in local if rule.key_fn(item) not in server_by_key]

    if rule.local_first:
        return tuple(local_only + merged_server)
    return tuple(merged_server + local_only)


def _split_tombstones(tombstones: Dict[str, int], server_timestamp: int) -> Tuple[FrozenSet[str], Dict[str, int]]:
    """Return (keys still guarded, tombstones to retain).

    A tombstone at or after the snapshot time still guards the key; older
    ones are pruned since the server has had a chance to see the deletion.
    """
    live = {k: v for k, v in tombstones.items() if v >= server_timestamp}
    return frozenset(live), live


class MergeResolver:
    """Fold a ServerSnapshot into a StoreState."""

    def __init__(self, rules: Optional[Dict[str, MergeRule]] = None, history_limit: int = 100):
        self.rules = dict(MERGE_RULES)
        if rules:
            self.rules.update(rules)
        self.history_limit = history_limit

    def merge(self, local: StoreState, snapshot: ServerSnapshot) -> StoreState:
        ts = snapshot.server_timestamp
        pending = local.pending
        meta = local.meta

        guarded_bookmarks, bookmark_tombstones = _split_tombstones(meta.bookmark_tombstones, ts)
        guarded_collections, collection_tombstones = _split_tombstones(
            meta.collection_tombstones, ts
        )

        bookmarks = keyed_union(
            local.bookmarks,
            snapshot.bookmarks,
            self.rules["bookmarks"],
            pinned=frozenset(b.url for b in pending.bookmarks),
            excluded=guarded_bookmarks | frozenset(pending.deleted_bookmark_urls),
        )
        collections = keyed_union(
            local.collections,
            snapshot.collections,
            self.rules["collections"],
            pinned=frozenset(c.id for c in pending.collections),
            excluded=guarded_collections | frozenset(pending.deleted_collection_ids),
        )
        cart_history = self._merge_cart(local, snapshot)
        history = self._merge_history(local, snapshot)
        tabs, current_tab_id = self._merge_tabs(local, snapshot)

        return dataclasses.replace(
            local,
            bookmarks=bookmarks,
            collections=collections,
            cart_history=cart_history,
            history=history,
            tabs=tabs,
            current_tab_id=current_tab_id,
            meta=dataclasses.replace(
                meta,
                last_sync_timestamp=ts,
                bookmark_tombstones=bookmark_tombstones,
                collection_tombstones=collection_tombstones,
            ),
        )

    def _merge_history(self, local: StoreState, snapshot: ServerSnapshot) -> Tuple[HistoryEntry, ...]:
        cleared_at = local.meta.history_cleared_at
        if cleared_at is not None and cleared_at > snapshot.server_timestamp:
            logger.debug("Snapshot predates history clear; skipping server history")
            return local.history

        incoming: List[HistoryEntry] = list(snapshot.history)
        if cleared_at is not None:
            incoming = [h for h in incoming if h.visited_at > cleared_at]

        merged = keyed_union(
            local.history,
            incoming,
            self.rules["history"],
            pinned=frozenset(h.url for h in local.pending.history),
        )
        ordered = sorted(merged, key=lambda h: (-h.visited_at, h.url))
        return tuple(ordered[: self.history_limit])

    def _merge_cart(self, local: StoreState, snapshot: ServerSnapshot) -> Tuple[CartSession, ...]:
        cleared_at = local.meta.analytics_cleared_at
        if cleared_at is not None and cleared_at > snapshot.server_timestamp:
            logger.debug("Snapshot predates analytics clear; skipping server cart history")
            return local.cart_history

        incoming: List[CartSession] = list(snapshot.cart_history)
        if cleared_at is not None:
            incoming = []
            for session in snapshot.cart_history:
                events = tuple(e for e in session.events if e.timestamp > cleared_at)
                if events:
                    incoming.append(dataclasses.replace(session, events=events))

        return keyed_union(
            local.cart_history,
            incoming,
            self.rules["cart_history"],
            pinned=frozenset(s.cart_url for s in local.pending.cart_history),
        )

    def _merge_tabs(self, local: StoreState, snapshot: ServerSnapshot) -> Tuple[Tuple[Tab, ...], Optional[str]]:
        if snapshot.tabs is None:
            return local.tabs, local.current_tab_id

        tabs = keyed_union(local.tabs, snapshot.tabs, self.rules["tabs"])
        ids = [t.id for t in tabs]
        if local.current_tab_id in ids:
            current = local.current_tab_id
        elif snapshot.current_tab_id in ids:
            current = snapshot.current_tab_id
        elif ids:
            current = ids[0]
        else:
            current = None
        return tabs, current
