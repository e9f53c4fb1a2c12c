"""
LocalStore - the client-side state container.

Holds one immutable StoreState. Every mutation computes the next state with
the pure functions in the ``*_ops`` modules, swaps it in, and writes the
serialized snapshot through to storage. Mutations stay allowed while a sync
is in flight; the orchestrator only ever acknowledges what it sent.
"""

import dataclasses
import logging
import sqlite3
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from ..consent import ConsentGate
from ..ids import IdempotencyKeyGenerator
from ..storage.base import BlobStorage, scoped_key
from ..sync.merge import MergeResolver
from ..types import (
    DEFAULT_COLLECTION_COLOR,
    DEFAULT_TAB_TITLE,
    Bookmark,
    CartItem,
    CartSession,
    Collection,
    ConsentState,
    HistoryEntry,
    PendingChanges,
    ProductInteraction,
    ServerSnapshot,
    StoreState,
    SyncMetadata,
    Tab,
    TimeToActionEvent,
    now_ms,
)
from . import (
    analytics_ops,
    bookmarks_ops,
    cart_ops,
    collections_ops,
    history_ops,
    outbox,
    tabs_ops,
)
from .serialization import dump_state, load_state

logger = logging.getLogger(__name__)

DEFAULT_STORE_NAME = "shopping-store"


class LocalStore:
    """Explicitly constructed store; one instance per signed-in user."""

    def __init__(
        self,
        *,
        storage: Optional[BlobStorage] = None,
        user_id: Optional[str] = None,
        store_name: str = DEFAULT_STORE_NAME,
        state: Optional[StoreState] = None,
        now_fn: Callable[[], int] = now_ms,
        id_generator: Optional[IdempotencyKeyGenerator] = None,
        history_limit: int = 100,
        cart_dedup_window_ms: int = 30_000,
        max_buffered_events: int = 1000,
    ):
        if storage is not None and not user_id:
            raise ValueError("user_id is required when storage is configured")
        self._storage = storage
        self.user_id = user_id
        self._key = scoped_key(user_id, store_name) if storage is not None else None
        self._state = state or StoreState()
        self._now = now_fn
        self._ids = id_generator or IdempotencyKeyGenerator()
        self.history_limit = history_limit
        self.cart_dedup_window_ms = cart_dedup_window_ms
        self.max_buffered_events = max_buffered_events
        self._resolver = MergeResolver(history_limit=history_limit)
        self.consent = ConsentGate(lambda: self._state.consent, self._apply_consent)

    @classmethod
    def open(cls, storage: BlobStorage, user_id: str, **kwargs: Any) -> "LocalStore":
        """Construct a store for *user_id* hydrated from *storage*.

        A missing or unreadable blob yields an empty store; the unreadable
        blob is overwritten on the next mutation.
        """
        store = cls(storage=storage, user_id=user_id, **kwargs)
        store._hydrate()
        return store

    # === Snapshot plumbing ===

    @property
    def state(self) -> StoreState:
        return self._state

    def _hydrate(self) -> None:
        try:
            raw = self._storage.get_item(self._key)
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Failed to read store {self._key}: {e}")
            return
        if not raw:
            logger.debug(f"No persisted state for {self._key}")
            return
        try:
            self._state = load_state(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable store blob {self._key}: {e.error_count()} errors")
            return
        logger.debug(f"Hydrated {self._key}: {len(self._state.bookmarks)} bookmarks")

    def _persist(self) -> None:
        if self._storage is None:
            return
        try:
            self._storage.set_item(self._key, dump_state(self._state))
        except (sqlite3.Error, OSError) as e:
            # In-memory snapshot stays authoritative; next mutation retries
            logger.error(f"Failed to persist store {self._key}: {e}")

    def _commit(self, next_state: StoreState) -> bool:
        if next_state is self._state:
            return False
        self._state = next_state
        self._persist()
        return True

    def _tracking_allowed(self, operation: str) -> bool:
        if self.consent.is_tracking_enabled():
            return True
        logger.debug(f"{operation} skipped: tracking consent is {self._state.consent.value}")
        return False

    # === Read accessors ===

    @property
    def bookmarks(self) -> Tuple[Bookmark, ...]:
        return self._state.bookmarks

    @property
    def history(self) -> Tuple[HistoryEntry, ...]:
        return self._state.history

    @property
    def collections(self) -> Tuple[Collection, ...]:
        return self._state.collections

    @property
    def cart_history(self) -> Tuple[CartSession, ...]:
        return self._state.cart_history

    @property
    def tabs(self) -> Tuple[Tab, ...]:
        return self._state.tabs

    @property
    def current_tab_id(self) -> Optional[str]:
        return self._state.current_tab_id

    @property
    def product_interactions(self) -> Tuple[ProductInteraction, ...]:
        return self._state.product_interactions

    @property
    def time_to_action_log(self) -> Tuple[TimeToActionEvent, ...]:
        return self._state.time_to_action_log

    @property
    def recent_searches(self) -> Tuple[str, ...]:
        return self._state.recent_searches

    @property
    def current_session_id(self) -> Optional[str]:
        return self._state.current_session_id

    @property
    def last_sync_timestamp(self) -> Optional[int]:
        return self._state.meta.last_sync_timestamp

    @property
    def is_syncing(self) -> bool:
        return self._state.meta.is_syncing

    @property
    def sync_error(self) -> Optional[str]:
        return self._state.meta.sync_error

    @property
    def history_cleared_at(self) -> Optional[int]:
        return self._state.meta.history_cleared_at

    # === Consent ===

    def is_tracking_enabled(self) -> bool:
        return self.consent.is_tracking_enabled()

    def set_consent(self, value: Any) -> ConsentState:
        """Accept or decline tracking.

        Raises:
            ValueError: For ``pending`` or an unknown value.
        """
        return self.consent.set_consent(value)

    def _apply_consent(self, consent: ConsentState) -> None:
        next_state = dataclasses.replace(self._state, consent=consent)
        if consent is ConsentState.DECLINED:
            next_state = analytics_ops.discard_unpushed(next_state)
        self._commit(next_state)
        logger.info(f"Tracking consent set to {consent.value}")

    # === Bookmarks ===

    def add_bookmark(self, bookmark: Bookmark) -> Bookmark:
        next_state, stored = bookmarks_ops.add_bookmark(self._state, bookmark, now=self._now())
        self._commit(next_state)
        return stored

    def remove_bookmark(self, url: str) -> bool:
        return self._commit(bookmarks_ops.remove_bookmark(self._state, url, now=self._now()))

    def is_bookmarked(self, url: str) -> bool:
        return bookmarks_ops.find_bookmark(self._state, url) is not None

    def get_bookmark(self, url: str) -> Optional[Bookmark]:
        return bookmarks_ops.find_bookmark(self._state, url)

    def update_bookmark_metadata(self, url: str, /, **fields: Any) -> bool:
        return self._commit(bookmarks_ops.update_bookmark_metadata(self._state, url, fields))

    def increment_view_count(self, url: str) -> bool:
        return self._commit(bookmarks_ops.increment_view_count(self._state, url, now=self._now()))

    def record_size_view(self, url: str, size: str) -> bool:
        return self._commit(bookmarks_ops.record_size_view(self._state, url, size))

    def record_color_view(self, url: str, color: str) -> bool:
        return self._commit(bookmarks_ops.record_color_view(self._state, url, color))

    def update_price(self, url: str, price: float) -> bool:
        return self._commit(bookmarks_ops.update_price(self._state, url, price, now=self._now()))

    # === History ===

    def add_to_history(self, url: str, title: str, source: str, brand: Optional[str] = None) -> bool:
        if not self._tracking_allowed("add_to_history"):
            return False
        return self._commit(
            history_ops.add_to_history(
                self._state,
                url,
                title,
                source,
                now=self._now(),
                limit=self.history_limit,
                brand=brand,
            )
        )

    def update_history_metadata(
        self, url: str, dwell_time: Optional[float] = None, scroll_depth: Optional[float] = None
    ) -> bool:
        if not self._tracking_allowed("update_history_metadata"):
            return False
        return self._commit(
            history_ops.update_history_metadata(self._state, url, dwell_time, scroll_depth)
        )

    def clear_history(self) -> None:
        self._commit(history_ops.clear_history(self._state, now=self._now()))

    def get_recent_history(self, limit: int = 10) -> List[HistoryEntry]:
        return history_ops.get_recent_history(self._state, limit)

    def get_most_visited(self, limit: int = 10) -> List[HistoryEntry]:
        return history_ops.get_most_visited(self._state, limit)

    def get_top_shops(self, limit: int = 5) -> List[Tuple[str, int]]:
        return history_ops.get_top_shops(self._state, limit)

    # === Collections ===

    def create_collection(
        self,
        name: str,
        description: Optional[str] = None,
        color: str = DEFAULT_COLLECTION_COLOR,
    ) -> Collection:
        next_state, collection = collections_ops.create_collection(
            self._state,
            name,
            collection_id=self._ids.new_id(),
            now=self._now(),
            description=description,
            color=color,
        )
        self._commit(next_state)
        return collection

    def delete_collection(self, collection_id: str) -> bool:
        return self._commit(
            collections_ops.delete_collection(self._state, collection_id, now=self._now())
        )

    def update_collection(self, collection_id: str, /, **fields: Any) -> bool:
        return self._commit(
            collections_ops.update_collection(self._state, collection_id, fields, now=self._now())
        )

    def add_item_to_collection(self, collection_id: str, bookmark: Bookmark) -> bool:
        return self._commit(
            collections_ops.add_item_to_collection(
                self._state, collection_id, bookmark, now=self._now()
            )
        )

    def remove_item_from_collection(self, collection_id: str, url: str) -> bool:
        return self._commit(
            collections_ops.remove_item_from_collection(
                self._state, collection_id, url, now=self._now()
            )
        )

    # === Cart ===

    def record_cart_event(
        self,
        event_type: str,
        cart_url: str,
        timestamp: Optional[int] = None,
        cart_value: Optional[float] = None,
        item_count: Optional[int] = None,
        items: Optional[Iterable[CartItem]] = None,
    ) -> bool:
        if not self._tracking_allowed("record_cart_event"):
            return False
        return self._commit(
            cart_ops.record_cart_event(
                self._state,
                event_type,
                cart_url,
                event_id=self._ids.new_event_id(),
                now=self._now(),
                dedup_window_ms=self.cart_dedup_window_ms,
                max_entries=self.max_buffered_events,
                timestamp=timestamp,
                cart_value=cart_value,
                item_count=item_count,
                items=items,
            )
        )

    # === Analytics ===

    def record_product_interaction(
        self,
        url: str,
        interaction_type: str,
        body_measurements: Optional[Dict[str, Any]] = None,
    ) -> bool:
        if not self._tracking_allowed("record_product_interaction"):
            return False
        return self._commit(
            analytics_ops.record_product_interaction(
                self._state,
                url,
                interaction_type,
                event_id=self._ids.new_event_id(),
                now=self._now(),
                max_entries=self.max_buffered_events,
                body_measurements=body_measurements,
            )
        )

    def record_time_to_action(self, url: str, action_type: str, seconds: float) -> bool:
        if not self._tracking_allowed("record_time_to_action"):
            return False
        return self._commit(
            analytics_ops.record_time_to_action(
                self._state,
                url,
                action_type,
                seconds,
                event_id=self._ids.new_event_id(),
                now=self._now(),
                max_entries=self.max_buffered_events,
            )
        )

    def start_session(self) -> str:
        session_id = self._ids.new_id()
        self._commit(analytics_ops.start_session(self._state, session_id=session_id))
        return session_id

    def end_session(self) -> None:
        self._commit(analytics_ops.end_session(self._state))

    def get_avg_time_to_action(self, action_type: Optional[str] = None) -> int:
        if not self.is_tracking_enabled():
            return 0
        return analytics_ops.get_avg_time_to_action(self._state, action_type)

    def get_cross_session_products(self) -> List[str]:
        if not self.is_tracking_enabled():
            return []
        return analytics_ops.get_cross_session_products(self._state)

    def clear_analytics(self) -> None:
        self._commit(analytics_ops.clear_analytics(self._state, now=self._now()))
        logger.info("Cleared local analytics data")

    # === Searches ===

    def add_search(self, query: str) -> None:
        self._commit(analytics_ops.add_search(self._state, query))

    def clear_searches(self) -> None:
        self._commit(analytics_ops.clear_searches(self._state))

    # === Tabs ===

    def add_tab(self, url: str, title: str = DEFAULT_TAB_TITLE) -> str:
        tab_id = f"tab_{self._ids.new_id()}"
        self._commit(tabs_ops.add_tab(self._state, url, tab_id=tab_id, title=title))
        return tab_id

    def remove_tab(self, tab_id: str) -> None:
        self._commit(tabs_ops.remove_tab(self._state, tab_id))

    def switch_tab(self, tab_id: str) -> None:
        self._commit(tabs_ops.switch_tab(self._state, tab_id))

    def update_tab(self, tab_id: str, url: str, title: str) -> None:
        self._commit(tabs_ops.update_tab(self._state, tab_id, url, title))

    def update_tab_screenshot(self, tab_id: str, screenshot: str) -> None:
        self._commit(tabs_ops.update_tab_screenshot(self._state, tab_id, screenshot))

    def close_all_tabs(self) -> None:
        self._commit(tabs_ops.close_all_tabs(self._state))

    # === Sync bookkeeping ===

    @property
    def pending_changes(self) -> PendingChanges:
        return self._state.pending

    def has_pending_changes(self) -> bool:
        return not self._state.pending.is_empty()

    def has_buffered_analytics(self) -> bool:
        return bool(self._state.product_interactions or self._state.time_to_action_log)

    def is_local_data_empty(self) -> bool:
        s = self._state
        return not (s.bookmarks or s.history or s.collections)

    def begin_sync(self) -> None:
        self._commit(
            dataclasses.replace(
                self._state, meta=dataclasses.replace(self._state.meta, is_syncing=True)
            )
        )

    def end_sync(self, error: Optional[str] = None, *, preserve_error: bool = False) -> None:
        """Leave the syncing state.

        ``preserve_error`` keeps the previous ``sync_error`` (auth failures
        are not sync errors).
        """
        meta = self._state.meta
        sync_error = meta.sync_error if preserve_error else error
        self._commit(
            dataclasses.replace(
                self._state,
                meta=dataclasses.replace(meta, is_syncing=False, sync_error=sync_error),
            )
        )

    def acknowledge_push(
        self,
        sent: PendingChanges,
        sent_interactions: Tuple[ProductInteraction, ...] = (),
        sent_time_to_action: Tuple[TimeToActionEvent, ...] = (),
        sent_meta: Optional[SyncMetadata] = None,
    ) -> None:
        """Drop exactly what a successful push delivered.

        *sent_meta* is the metadata captured with *sent*; a deletion that was
        queued again since then carries a newer tombstone and stays pending.
        """
        acked = outbox.acknowledge(
            self._state.pending, sent, sent_meta=sent_meta, meta=self._state.meta
        )
        next_state = dataclasses.replace(self._state, pending=acked)
        next_state = analytics_ops.acknowledge_buffers(
            next_state, sent_interactions, sent_time_to_action
        )
        self._commit(next_state)

    def apply_server_sync(self, snapshot: ServerSnapshot) -> None:
        """Merge a server snapshot into the local state."""
        self._commit(self._resolver.merge(self._state, snapshot))
        logger.debug(
            f"Applied server snapshot at {snapshot.server_timestamp}: "
            f"{snapshot.record_count} records"
        )
