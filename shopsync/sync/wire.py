"""Pydantic models for the browser-sync API, and conversion to local types.

Field names follow the backend DTOs (camelCase on the wire). Where the
backend's vocabulary differs from the local one the conversion functions do
the renaming: ``faviconUrl`` is the bookmark image, ``createdAt`` the time
it was added, ``dwellTimeSeconds`` / ``scrollDepthPercent`` the history
engagement metrics.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..ids import is_valid_uuid, stable_event_id
from ..types import (
    DEFAULT_COLLECTION_COLOR,
    DEFAULT_TAB_TITLE,
    Bookmark,
    CartEvent,
    CartItem,
    CartSession,
    Collection,
    HistoryEntry,
    PendingChanges,
    PricePoint,
    ProductInteraction,
    ServerSnapshot,
    Tab,
    TimeToActionEvent,
)
from ..urls import canonicalize_url

logger = logging.getLogger(__name__)


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# =============================================================================
# Entity Models
# =============================================================================


class WirePricePoint(WireModel):
    price: float
    date: int


class WireBookmark(WireModel):
    id: str | None = None
    url: str
    title: str | None = None
    favicon_url: str | None = None
    price: float | None = None
    price_history: list[WirePricePoint] | None = None
    brand: str | None = None
    category: str | None = None
    source: str | None = None
    sizes_viewed: list[str] | None = None
    colors_viewed: list[str] | None = None
    view_count: int | None = None
    last_viewed_at: int | None = None
    emotion_at_save: str | None = None
    created_at: int | None = None
    updated_at: int | None = None


class WireHistory(WireModel):
    url: str
    title: str | None = None
    source: str | None = None
    dwell_time_seconds: float | None = None
    scroll_depth_percent: float | None = None
    visit_count: int = 1
    visited_at: int = 0
    brand: str | None = None
    session_id: str | None = None
    is_cart_page: bool | None = None


class WireCollection(WireModel):
    id: str | None = None
    name: str
    description: str | None = None
    color: str | None = None
    bookmark_ids: list[str] | None = None
    bookmark_urls: list[str] | None = None
    created_at: int | None = None
    updated_at: int | None = None


class WireCartItem(WireModel):
    title: str
    price: float | None = None
    quantity: int | None = None


class WireCartEvent(WireModel):
    type: str
    timestamp: int
    cart_url: str
    client_event_id: str | None = None
    item_count: int | None = None
    cart_value: float | None = None
    items: list[WireCartItem] | None = None


class WireCartHistory(WireModel):
    id: str | None = None
    cart_url: str
    events: list[WireCartEvent] = []
    abandoned: bool = False
    time_to_checkout: int | None = None


class WireTab(WireModel):
    id: str
    url: str
    title: str | None = None
    position: int | None = None


class WireTimeToAction(WireModel):
    client_event_id: str
    session_id: str | None = None
    product_url: str
    action_type: str
    seconds: float
    timestamp: int


class WireProductInteraction(WireModel):
    client_event_id: str
    session_id: str | None = None
    product_url: str
    interaction_type: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    body_measurements_at_time: dict[str, Any] | None = None
    timestamp: int


# =============================================================================
# Request / Response
# =============================================================================


class SyncRequest(WireModel):
    """Body of ``POST /browser-sync``."""

    bookmarks: list[WireBookmark] = []
    deleted_bookmark_urls: list[str] = []
    history: list[WireHistory] = []
    collections: list[WireCollection] = []
    deleted_collection_ids: list[str] = []
    cart_history: list[WireCartHistory] = []
    time_to_action_events: list[WireTimeToAction] = []
    product_interactions: list[WireProductInteraction] = []

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class SyncResponse(WireModel):
    """Canonical server state returned by every pull and push."""

    bookmarks: list[WireBookmark] = []
    history: list[WireHistory] = []
    collections: list[WireCollection] = []
    cart_history: list[WireCartHistory] = []
    tabs: list[WireTab] | None = None
    current_tab_id: str | None = None
    server_timestamp: int


# =============================================================================
# Local -> Wire
# =============================================================================


def _wire_url(url: str) -> str:
    return canonicalize_url(url) or url


def bookmark_to_wire(b: Bookmark) -> WireBookmark:
    return WireBookmark(
        id=b.id if is_valid_uuid(b.id) else None,
        url=_wire_url(b.url),
        title=b.title,
        favicon_url=b.image_url,
        price=b.price,
        price_history=[WirePricePoint(price=p.price, date=p.date) for p in b.price_history],
        brand=b.brand,
        category=b.category,
        source=b.source,
        sizes_viewed=list(b.sizes_viewed),
        colors_viewed=list(b.colors_viewed),
        view_count=b.view_count,
        last_viewed_at=b.last_viewed_at,
        emotion_at_save=b.emotion_at_save,
        created_at=b.added_at or None,
    )


def history_to_wire(h: HistoryEntry) -> WireHistory:
    return WireHistory(
        url=_wire_url(h.url),
        title=h.title,
        source=h.source,
        dwell_time_seconds=h.dwell_time,
        scroll_depth_percent=h.scroll_depth,
        visit_count=h.visit_count,
        visited_at=h.visited_at,
        brand=h.brand,
        session_id=h.session_id,
        is_cart_page=h.is_cart_page,
    )


def collection_to_wire(c: Collection) -> WireCollection:
    return WireCollection(
        id=c.id if is_valid_uuid(c.id) else None,
        name=c.name,
        description=c.description,
        color=c.color,
        bookmark_urls=[_wire_url(i.url) for i in c.items],
        bookmark_ids=[i.id for i in c.items if is_valid_uuid(i.id)],
        created_at=c.created_at or None,
        updated_at=c.updated_at or None,
    )


def cart_session_to_wire(s: CartSession) -> WireCartHistory:
    return WireCartHistory(
        cart_url=_wire_url(s.cart_url),
        events=[
            WireCartEvent(
                type=e.type,
                timestamp=e.timestamp,
                cart_url=_wire_url(e.cart_url),
                client_event_id=e.client_event_id,
                item_count=e.item_count,
                cart_value=e.cart_value,
                items=[WireCartItem(title=i.title, price=i.price, quantity=i.quantity) for i in e.items]
                or None,
            )
            for e in s.events
        ],
        abandoned=s.abandoned,
        time_to_checkout=s.time_to_checkout,
    )


def build_push_request(
    pending: PendingChanges,
    interactions: Tuple[ProductInteraction, ...] = (),
    time_to_action: Tuple[TimeToActionEvent, ...] = (),
    current_session_id: Optional[str] = None,
) -> SyncRequest:
    """Assemble the push body from an outbox snapshot and analytics buffers."""
    return SyncRequest(
        bookmarks=[bookmark_to_wire(b) for b in pending.bookmarks],
        deleted_bookmark_urls=[_wire_url(u) for u in pending.deleted_bookmark_urls],
        history=[history_to_wire(h) for h in pending.history],
        collections=[collection_to_wire(c) for c in pending.collections],
        deleted_collection_ids=list(pending.deleted_collection_ids),
        cart_history=[cart_session_to_wire(s) for s in pending.cart_history],
        time_to_action_events=[
            WireTimeToAction(
                client_event_id=e.client_event_id,
                session_id=e.session_id or current_session_id,
                product_url=_wire_url(e.product_url),
                action_type=e.action_type,
                seconds=e.seconds,
                timestamp=e.timestamp,
            )
            for e in time_to_action
        ],
        product_interactions=[
            WireProductInteraction(
                client_event_id=p.client_event_id,
                session_id=p.session_id,
                product_url=_wire_url(p.product_url),
                interaction_type=p.type,
                body_measurements_at_time=p.body_measurements,
                timestamp=p.timestamp,
            )
            for p in interactions
        ],
    )


# =============================================================================
# Wire -> Local
# =============================================================================


def bookmark_from_wire(w: WireBookmark) -> Bookmark:
    return Bookmark(
        url=_wire_url(w.url),
        title=w.title or "",
        source=w.source or "",
        id=w.id,
        image_url=w.favicon_url,
        price=w.price,
        price_history=tuple(PricePoint(price=p.price, date=p.date) for p in w.price_history or ()),
        brand=w.brand,
        category=w.category,
        view_count=w.view_count or 0,
        last_viewed_at=w.last_viewed_at,
        sizes_viewed=tuple(w.sizes_viewed or ()),
        colors_viewed=tuple(w.colors_viewed or ()),
        emotion_at_save=w.emotion_at_save,
        added_at=w.created_at or 0,
    )


def history_from_wire(w: WireHistory) -> HistoryEntry:
    return HistoryEntry(
        url=_wire_url(w.url),
        title=w.title or "",
        source=w.source or "",
        visited_at=w.visited_at,
        visit_count=max(1, w.visit_count),
        session_id=w.session_id,
        dwell_time=w.dwell_time_seconds,
        scroll_depth=w.scroll_depth_percent,
        brand=w.brand,
        is_cart_page=bool(w.is_cart_page),
    )


def collection_from_wire(
    w: WireCollection, by_url: Dict[str, Bookmark], by_id: Dict[str, Bookmark]
) -> Optional[Collection]:
    """Resolve a server collection's items against the snapshot bookmarks."""
    if not w.id:
        logger.warning(f"Ignoring server collection {w.name!r} without an id")
        return None
    items: List[Bookmark] = []
    if w.bookmark_urls:
        items = [by_url[u] for u in (_wire_url(u) for u in w.bookmark_urls) if u in by_url]
    elif w.bookmark_ids:
        items = [by_id[i] for i in w.bookmark_ids if i in by_id]
    return Collection(
        id=w.id,
        name=w.name,
        description=w.description,
        color=w.color or DEFAULT_COLLECTION_COLOR,
        items=tuple(items),
        created_at=w.created_at or 0,
        updated_at=w.updated_at or 0,
    )


def cart_session_from_wire(w: WireCartHistory) -> CartSession:
    cart_url = _wire_url(w.cart_url)
    events = tuple(
        CartEvent(
            type=e.type,
            timestamp=e.timestamp,
            cart_url=_wire_url(e.cart_url),
            client_event_id=e.client_event_id
            or stable_event_id(cart_url, e.type, e.timestamp, e.cart_value),
            item_count=e.item_count,
            cart_value=e.cart_value,
            items=tuple(CartItem(title=i.title, price=i.price, quantity=i.quantity) for i in e.items or ()),
        )
        for e in w.events
    )
    return CartSession(
        cart_url=cart_url,
        events=events,
        abandoned=w.abandoned,
        time_to_checkout=w.time_to_checkout,
    )


def snapshot_from_response(response: SyncResponse) -> ServerSnapshot:
    bookmarks = tuple(bookmark_from_wire(b) for b in response.bookmarks)
    by_url = {b.url: b for b in bookmarks}
    by_id = {b.id: b for b in bookmarks if b.id}
    collections = tuple(
        c
        for c in (collection_from_wire(w, by_url, by_id) for w in response.collections)
        if c is not None
    )
    tabs = None
    if response.tabs is not None:
        ordered = sorted(
            enumerate(response.tabs),
            key=lambda pair: (pair[1].position if pair[1].position is not None else pair[0]),
        )
        tabs = tuple(Tab(id=t.id, url=t.url, title=t.title or DEFAULT_TAB_TITLE) for _, t in ordered)
    return ServerSnapshot(
        server_timestamp=response.server_timestamp,
        bookmarks=bookmarks,
        history=tuple(history_from_wire(h) for h in response.history),
        collections=collections,
        cart_history=tuple(cart_session_from_wire(s) for s in response.cart_history),
        tabs=tabs,
        current_tab_id=response.current_tab_id,
    )


def parse_snapshot(payload: Any) -> ServerSnapshot:
    """Validate a decoded JSON body.

    Raises:
        pydantic.ValidationError: If the body does not match the schema.
    """
    return snapshot_from_response(SyncResponse.model_validate(payload))
