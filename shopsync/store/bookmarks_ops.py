"""Bookmark operations for LocalStore.

Functions take the current StoreState and return the next one. Returning
the same object means nothing changed and nothing is queued.
"""

import dataclasses
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from ..types import Bookmark, PricePoint, StoreState
from ..urls import canonicalize_url, require_canonical_url
from . import outbox

logger = logging.getLogger(__name__)

MAX_PRICE_HISTORY = 20

# Fields a caller may patch through update_bookmark_metadata
UPDATABLE_FIELDS = frozenset(
    {"title", "source", "image_url", "price", "brand", "category", "emotion_at_save"}
)


def find_bookmark(state: StoreState, url: str) -> Optional[Bookmark]:
    canonical = canonicalize_url(url) or url
    for bookmark in state.bookmarks:
        if bookmark.url == canonical:
            return bookmark
    return None


def add_bookmark(state: StoreState, bookmark: Bookmark, *, now: int) -> Tuple[StoreState, Bookmark]:
    """Add a bookmark, newest first.

    Returns:
        (next state, stored bookmark). A URL that is already bookmarked is a
        no-op returning the existing record.

    Raises:
        ValueError: If the bookmark URL cannot be parsed.
    """
    url = require_canonical_url(bookmark.url, "bookmark url")
    existing = find_bookmark(state, url)
    if existing is not None:
        return state, existing

    stored = dataclasses.replace(bookmark, url=url, added_at=bookmark.added_at or now)
    tombstones = {k: v for k, v in state.meta.bookmark_tombstones.items() if k != url}
    next_state = dataclasses.replace(
        state,
        bookmarks=(stored,) + state.bookmarks,
        pending=outbox.queue_bookmark(state.pending, stored),
        meta=dataclasses.replace(state.meta, bookmark_tombstones=tombstones),
    )
    return next_state, stored


def remove_bookmark(state: StoreState, url: str, *, now: int) -> StoreState:
    """Delete a bookmark and leave a tombstone for the next push."""
    existing = find_bookmark(state, url)
    if existing is None:
        return state
    tombstones = dict(state.meta.bookmark_tombstones)
    tombstones[existing.url] = now
    return dataclasses.replace(
        state,
        bookmarks=tuple(b for b in state.bookmarks if b.url != existing.url),
        pending=outbox.queue_bookmark_deletion(state.pending, existing.url),
        meta=dataclasses.replace(state.meta, bookmark_tombstones=tombstones),
    )


def _update(state: StoreState, url: str, change: Callable[[Bookmark], Bookmark]) -> StoreState:
    existing = find_bookmark(state, url)
    if existing is None:
        logger.debug(f"No bookmark for {url}; update ignored")
        return state
    updated = change(existing)
    if updated == existing:
        return state
    return dataclasses.replace(
        state,
        bookmarks=tuple(updated if b.url == existing.url else b for b in state.bookmarks),
        pending=outbox.queue_bookmark(state.pending, updated),
    )


def update_bookmark_metadata(state: StoreState, url: str, fields: Dict[str, Any]) -> StoreState:
    """Patch display metadata on a bookmark.

    Raises:
        ValueError: If *fields* names something other than metadata.
    """
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update bookmark fields: {', '.join(sorted(unknown))}")
    return _update(state, url, lambda b: dataclasses.replace(b, **fields))


def increment_view_count(state: StoreState, url: str, *, now: int) -> StoreState:
    return _update(
        state,
        url,
        lambda b: dataclasses.replace(b, view_count=b.view_count + 1, last_viewed_at=now),
    )


def record_size_view(state: StoreState, url: str, size: str) -> StoreState:
    if not size:
        return state
    return _update(
        state,
        url,
        lambda b: b if size in b.sizes_viewed else dataclasses.replace(
            b, sizes_viewed=b.sizes_viewed + (size,)
        ),
    )


def record_color_view(state: StoreState, url: str, color: str) -> StoreState:
    if not color:
        return state
    return _update(
        state,
        url,
        lambda b: b if color in b.colors_viewed else dataclasses.replace(
            b, colors_viewed=b.colors_viewed + (color,)
        ),
    )


def update_price(state: StoreState, url: str, price: float, *, now: int) -> StoreState:
    """Set the current price and prepend it to the price history."""
    if price is None or price < 0:
        raise ValueError("price must be a non-negative number")

    def change(b: Bookmark) -> Bookmark:
        history = (PricePoint(price=price, date=now),) + b.price_history
        return dataclasses.replace(b, price=price, price_history=history[:MAX_PRICE_HISTORY])

    return _update(state, url, change)
