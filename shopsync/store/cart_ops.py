"""Cart timeline operations for LocalStore.

Cart pages report the same event several times (page reloads, SPA
re-renders). An event matching an existing one on ``type`` and
``cart_value`` inside the dedup window is treated as a redelivery.
"""

import dataclasses
import logging
from typing import Iterable, Optional, Tuple

from ..types import (
    VALID_CART_EVENT_TYPES,
    CartEvent,
    CartEventType,
    CartItem,
    CartSession,
    StoreState,
)
from ..urls import canonicalize_url
from . import outbox

logger = logging.getLogger(__name__)

_CHECKOUT_TYPES = (CartEventType.CHECKOUT_START.value, CartEventType.CHECKOUT_COMPLETE.value)


def summarize_events(events: Tuple[CartEvent, ...]) -> Tuple[bool, Optional[int]]:
    """Derive ``(abandoned, time_to_checkout)`` from a cart timeline."""
    ordered = sorted(events, key=lambda e: e.timestamp)
    types = {e.type for e in ordered}
    abandoned = (
        CartEventType.ADD.value in types and CartEventType.CHECKOUT_COMPLETE.value not in types
    )
    first_add = next((e for e in ordered if e.type == CartEventType.ADD.value), None)
    if first_add is None:
        return abandoned, None
    checkout = next(
        (e for e in ordered if e.type in _CHECKOUT_TYPES and e.timestamp >= first_add.timestamp),
        None,
    )
    if checkout is None:
        return abandoned, None
    return abandoned, checkout.timestamp - first_add.timestamp


def build_session(cart_url: str, events: Tuple[CartEvent, ...]) -> CartSession:
    abandoned, time_to_checkout = summarize_events(events)
    return CartSession(
        cart_url=cart_url,
        events=events,
        abandoned=abandoned,
        time_to_checkout=time_to_checkout,
    )


def is_duplicate(session: CartSession, event: CartEvent, window_ms: int) -> bool:
    return any(
        e.type == event.type
        and e.cart_value == event.cart_value
        and abs(e.timestamp - event.timestamp) <= window_ms
        for e in session.events
    )


def record_cart_event(
    state: StoreState,
    event_type: str,
    cart_url: str,
    *,
    event_id: str,
    now: int,
    dedup_window_ms: int,
    max_entries: int,
    timestamp: Optional[int] = None,
    cart_value: Optional[float] = None,
    item_count: Optional[int] = None,
    items: Optional[Iterable[CartItem]] = None,
) -> StoreState:
    """Append an event to the cart's timeline.

    Unknown event types and unparseable URLs are dropped.
    """
    event_type = getattr(event_type, "value", event_type)
    if event_type not in VALID_CART_EVENT_TYPES:
        logger.debug(f"Dropping cart event with unknown type {event_type!r}")
        return state
    canonical = canonicalize_url(cart_url)
    if canonical is None:
        logger.debug("Dropping cart event with unparseable URL")
        return state

    event = CartEvent(
        type=event_type,
        timestamp=timestamp if timestamp is not None else now,
        cart_url=canonical,
        client_event_id=event_id,
        item_count=item_count,
        cart_value=cart_value,
        items=tuple(items or ()),
    )
    existing = next((s for s in state.cart_history if s.cart_url == canonical), None)
    if existing is not None and is_duplicate(existing, event, dedup_window_ms):
        logger.debug(f"Dropping duplicate {event_type} event for {canonical}")
        return state

    prior = existing.events if existing is not None else ()
    session = build_session(canonical, prior + (event,))
    others = tuple(s for s in state.cart_history if s.cart_url != canonical)
    sessions = outbox.cap_oldest(others + (session,), max_entries, "Cart history")
    return dataclasses.replace(
        state,
        cart_history=sessions,
        pending=outbox.queue_cart_session(state.pending, session, max_entries),
    )
