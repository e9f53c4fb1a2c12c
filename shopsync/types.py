"""
Shared record types for shopsync.

All synchronizable entities are frozen dataclasses. The local store never
mutates a record in place; every operation builds new records and swaps in a
new StoreState, so a reader never observes a half-applied change.

Timestamps are integer milliseconds since the epoch, which is also what the
sync backend speaks on the wire.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

# === Shared Utility Functions ===


def now_ms() -> int:
    """Get the current time as epoch milliseconds."""
    return int(time.time() * 1000)


DEFAULT_COLLECTION_COLOR = "#6366f1"
DEFAULT_TAB_TITLE = "New Tab"

# === Enums ===


class ConsentState(str, Enum):
    """Tri-state analytics consent flag."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class CartEventType(str, Enum):
    """Cart timeline event kinds."""

    ADD = "add"
    REMOVE = "remove"
    CHECKOUT_START = "checkout_start"
    CHECKOUT_COMPLETE = "checkout_complete"
    CART_VIEW = "cart_view"


VALID_CART_EVENT_TYPES = frozenset(t.value for t in CartEventType)


class SyncPhase(str, Enum):
    """Orchestrator state machine phases."""

    IDLE = "idle"
    PUSHING = "pushing"
    PULLING = "pulling"
    ERROR = "error"


class SyncStatus(str, Enum):
    """Outcome of a sync operation."""

    OK = "ok"
    NOTHING_TO_PUSH = "nothing_to_push"
    RECOVERABLE_ERROR = "recoverable_error"
    AUTH_REQUIRED = "auth_required"


# === Errors ===


class SyncError(Exception):
    """Base class for failures at the sync transport seam."""


class TransportError(SyncError):
    """Network-level failure: no connectivity, timeout, malformed response."""


class AuthRequiredError(SyncError):
    """No usable credentials, or the backend refused the bearer token."""


class ServerRejectedError(SyncError):
    """The backend answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        message = f"Sync request rejected with status {status_code}"
        if body:
            message = f"{message}: {body[:200]}"
        super().__init__(message)


# === Entities ===


@dataclass(frozen=True)
class PricePoint:
    """One observed price for a bookmarked product."""

    price: float
    date: int


@dataclass(frozen=True)
class Bookmark:
    """A saved product page. Keyed by canonical URL."""

    url: str
    title: str
    source: str = ""
    id: Optional[str] = None
    image_url: Optional[str] = None
    price: Optional[float] = None
    price_history: Tuple[PricePoint, ...] = ()  # newest first
    brand: Optional[str] = None
    category: Optional[str] = None
    view_count: int = 0
    last_viewed_at: Optional[int] = None
    sizes_viewed: Tuple[str, ...] = ()
    colors_viewed: Tuple[str, ...] = ()
    emotion_at_save: Optional[str] = None
    added_at: int = 0


@dataclass(frozen=True)
class HistoryEntry:
    """A visited page. Keyed by canonical URL."""

    url: str
    title: str
    source: str
    visited_at: int
    visit_count: int = 1
    session_id: Optional[str] = None
    dwell_time: Optional[float] = None  # seconds
    scroll_depth: Optional[float] = None  # percent
    brand: Optional[str] = None
    is_cart_page: bool = False


@dataclass(frozen=True)
class Collection:
    """A user wishlist. Keyed by id."""

    id: str
    name: str
    description: Optional[str] = None
    color: str = DEFAULT_COLLECTION_COLOR
    items: Tuple[Bookmark, ...] = ()
    created_at: int = 0
    updated_at: int = 0


@dataclass(frozen=True)
class CartItem:
    title: str
    price: Optional[float] = None
    quantity: Optional[int] = None


@dataclass(frozen=True)
class CartEvent:
    """A single entry on a cart's timeline."""

    type: str  # CartEventType value
    timestamp: int
    cart_url: str
    client_event_id: str
    item_count: Optional[int] = None
    cart_value: Optional[float] = None
    items: Tuple[CartItem, ...] = ()


@dataclass(frozen=True)
class CartSession:
    """Event timeline of one cart page. Keyed by cart URL."""

    cart_url: str
    events: Tuple[CartEvent, ...] = ()
    abandoned: bool = False
    time_to_checkout: Optional[int] = None  # ms from first add to checkout


@dataclass(frozen=True)
class ProductInteraction:
    client_event_id: str
    product_url: str
    type: str  # view, bookmark, add_to_cart, ...
    timestamp: int
    session_id: Optional[str] = None
    body_measurements: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class TimeToActionEvent:
    client_event_id: str
    product_url: str
    action_type: str  # bookmark | cart
    seconds: float
    timestamp: int
    session_id: Optional[str] = None


@dataclass(frozen=True)
class Tab:
    """Browser tab. Ephemeral UI state; screenshots never leave the device."""

    id: str
    url: str
    title: str = DEFAULT_TAB_TITLE
    screenshot: Optional[str] = None


# === Sync State ===


@dataclass(frozen=True)
class PendingChanges:
    """The outbox: everything the server does not know yet.

    Upsert partitions hold at most one diff per natural key. Tombstone lists
    record deletions that must reach the server even though the entity no
    longer exists locally.
    """

    bookmarks: Tuple[Bookmark, ...] = ()
    deleted_bookmark_urls: Tuple[str, ...] = ()
    history: Tuple[HistoryEntry, ...] = ()
    collections: Tuple[Collection, ...] = ()
    deleted_collection_ids: Tuple[str, ...] = ()
    cart_history: Tuple[CartSession, ...] = ()

    def is_empty(self) -> bool:
        return not any(self.counts().values())

    def counts(self) -> Dict[str, int]:
        return {
            "bookmarks": len(self.bookmarks),
            "deleted_bookmark_urls": len(self.deleted_bookmark_urls),
            "history": len(self.history),
            "collections": len(self.collections),
            "deleted_collection_ids": len(self.deleted_collection_ids),
            "cart_history": len(self.cart_history),
        }


@dataclass(frozen=True)
class SyncMetadata:
    """Bookkeeping for the sync cycle.

    Tombstone maps (key -> deletion time) outlive the outbox entry: they keep
    guarding against snapshots older than the deletion after it was pushed.
    """

    last_sync_timestamp: Optional[int] = None
    is_syncing: bool = False
    sync_error: Optional[str] = None
    history_cleared_at: Optional[int] = None
    analytics_cleared_at: Optional[int] = None  # cart timelines older than this stay cleared
    bookmark_tombstones: Dict[str, int] = field(default_factory=dict)
    collection_tombstones: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class StoreState:
    """The whole client-side snapshot held by LocalStore."""

    bookmarks: Tuple[Bookmark, ...] = ()
    history: Tuple[HistoryEntry, ...] = ()
    collections: Tuple[Collection, ...] = ()
    cart_history: Tuple[CartSession, ...] = ()
    tabs: Tuple[Tab, ...] = ()
    current_tab_id: Optional[str] = None
    consent: ConsentState = ConsentState.PENDING
    pending: PendingChanges = field(default_factory=PendingChanges)
    product_interactions: Tuple[ProductInteraction, ...] = ()
    time_to_action_log: Tuple[TimeToActionEvent, ...] = ()
    recent_searches: Tuple[str, ...] = ()
    current_session_id: Optional[str] = None
    meta: SyncMetadata = field(default_factory=SyncMetadata)


@dataclass(frozen=True)
class ServerSnapshot:
    """Canonical server state as returned by a pull or a push."""

    server_timestamp: int
    bookmarks: Tuple[Bookmark, ...] = ()
    history: Tuple[HistoryEntry, ...] = ()
    collections: Tuple[Collection, ...] = ()
    cart_history: Tuple[CartSession, ...] = ()
    tabs: Optional[Tuple[Tab, ...]] = None  # None: server did not report tabs
    current_tab_id: Optional[str] = None

    @property
    def record_count(self) -> int:
        return (
            len(self.bookmarks)
            + len(self.history)
            + len(self.collections)
            + len(self.cart_history)
        )


@dataclass(frozen=True)
class SyncResult:
    """Result of a sync operation.

    Callers branch on ``status`` to tell a transient failure (retry on the
    next lifecycle trigger) from missing credentials (sign in first).
    """

    status: SyncStatus
    reason: Optional[str] = None
    pushed: int = 0
    pulled: int = 0

    @property
    def success(self) -> bool:
        return self.status in (SyncStatus.OK, SyncStatus.NOTHING_TO_PUSH)

    @classmethod
    def ok(cls, pushed: int = 0, pulled: int = 0) -> "SyncResult":
        return cls(SyncStatus.OK, pushed=pushed, pulled=pulled)

    @classmethod
    def nothing_to_push(cls) -> "SyncResult":
        return cls(SyncStatus.NOTHING_TO_PUSH, reason="Nothing to push")

    @classmethod
    def recoverable(cls, reason: str, pushed: int = 0, pulled: int = 0) -> "SyncResult":
        return cls(SyncStatus.RECOVERABLE_ERROR, reason=reason, pushed=pushed, pulled=pulled)

    @classmethod
    def auth_required(cls, reason: str = "Not authenticated") -> "SyncResult":
        return cls(SyncStatus.AUTH_REQUIRED, reason=reason)
