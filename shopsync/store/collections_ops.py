"""Collection (wishlist) operations for LocalStore."""

import dataclasses
import logging
from typing import Any, Dict, Optional, Tuple

from ..types import DEFAULT_COLLECTION_COLOR, Bookmark, Collection, StoreState
from ..urls import canonicalize_url, require_canonical_url
from . import outbox

logger = logging.getLogger(__name__)

MAX_COLLECTION_NAME = 200
UPDATABLE_FIELDS = frozenset({"name", "description", "color"})


def _check_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValueError("collection name cannot be empty")
    if len(name) > MAX_COLLECTION_NAME:
        raise ValueError(f"collection name too long (max {MAX_COLLECTION_NAME} characters)")
    return name.strip()


def find_collection(state: StoreState, collection_id: str) -> Optional[Collection]:
    for collection in state.collections:
        if collection.id == collection_id:
            return collection
    return None


def _put(state: StoreState, collection: Collection) -> StoreState:
    return dataclasses.replace(
        state,
        collections=tuple(
            collection if c.id == collection.id else c for c in state.collections
        ),
        pending=outbox.queue_collection(state.pending, collection),
    )


def create_collection(
    state: StoreState,
    name: str,
    *,
    collection_id: str,
    now: int,
    description: Optional[str] = None,
    color: str = DEFAULT_COLLECTION_COLOR,
) -> Tuple[StoreState, Collection]:
    """Create an empty collection, newest first.

    Raises:
        ValueError: If the name is empty.
    """
    collection = Collection(
        id=collection_id,
        name=_check_name(name),
        description=description,
        color=color or DEFAULT_COLLECTION_COLOR,
        created_at=now,
        updated_at=now,
    )
    next_state = dataclasses.replace(
        state,
        collections=(collection,) + state.collections,
        pending=outbox.queue_collection(state.pending, collection),
    )
    return next_state, collection


def delete_collection(state: StoreState, collection_id: str, *, now: int) -> StoreState:
    if find_collection(state, collection_id) is None:
        return state
    tombstones = dict(state.meta.collection_tombstones)
    tombstones[collection_id] = now
    return dataclasses.replace(
        state,
        collections=tuple(c for c in state.collections if c.id != collection_id),
        pending=outbox.queue_collection_deletion(state.pending, collection_id),
        meta=dataclasses.replace(state.meta, collection_tombstones=tombstones),
    )


def update_collection(
    state: StoreState, collection_id: str, fields: Dict[str, Any], *, now: int
) -> StoreState:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update collection fields: {', '.join(sorted(unknown))}")
    existing = find_collection(state, collection_id)
    if existing is None:
        return state
    if "name" in fields:
        fields = dict(fields, name=_check_name(fields["name"]))
    updated = dataclasses.replace(existing, **fields)
    if updated == existing:
        return state
    return _put(state, dataclasses.replace(updated, updated_at=now))


def add_item_to_collection(
    state: StoreState, collection_id: str, bookmark: Bookmark, *, now: int
) -> StoreState:
    existing = find_collection(state, collection_id)
    if existing is None:
        return state
    url = require_canonical_url(bookmark.url, "bookmark url")
    if any(item.url == url for item in existing.items):
        return state
    item = dataclasses.replace(bookmark, url=url, added_at=now)
    return _put(
        state,
        dataclasses.replace(existing, items=(item,) + existing.items, updated_at=now),
    )


def remove_item_from_collection(
    state: StoreState, collection_id: str, url: str, *, now: int
) -> StoreState:
    existing = find_collection(state, collection_id)
    if existing is None:
        return state
    canonical = canonicalize_url(url) or url
    items = tuple(i for i in existing.items if i.url != canonical)
    if len(items) == len(existing.items):
        return state
    return _put(state, dataclasses.replace(existing, items=items, updated_at=now))
