"""Product analytics buffers, sessions and derived metrics."""

import dataclasses
import logging
import math
from typing import Any, Dict, List, Optional, Set, Tuple

from ..types import ProductInteraction, StoreState, TimeToActionEvent
from ..urls import canonicalize_url
from . import outbox

logger = logging.getLogger(__name__)

MAX_RECENT_SEARCHES = 20


def record_product_interaction(
    state: StoreState,
    url: str,
    interaction_type: str,
    *,
    event_id: str,
    now: int,
    max_entries: int,
    body_measurements: Optional[Dict[str, Any]] = None,
) -> StoreState:
    canonical = canonicalize_url(url)
    if canonical is None:
        logger.debug("Dropping product interaction with unparseable URL")
        return state
    if not interaction_type:
        logger.debug("Dropping product interaction without a type")
        return state
    interaction = ProductInteraction(
        client_event_id=event_id,
        product_url=canonical,
        type=interaction_type,
        timestamp=now,
        session_id=state.current_session_id,
        body_measurements=dict(body_measurements) if body_measurements else None,
    )
    return dataclasses.replace(
        state,
        product_interactions=outbox.cap_oldest(
            state.product_interactions + (interaction,), max_entries, "Product interaction"
        ),
    )


def record_time_to_action(
    state: StoreState,
    url: str,
    action_type: str,
    seconds: float,
    *,
    event_id: str,
    now: int,
    max_entries: int,
) -> StoreState:
    canonical = canonicalize_url(url)
    if canonical is None:
        logger.debug("Dropping time-to-action event with unparseable URL")
        return state
    if seconds is None or not math.isfinite(seconds) or seconds < 0:
        logger.debug(f"Dropping time-to-action event with invalid duration {seconds!r}")
        return state
    event = TimeToActionEvent(
        client_event_id=event_id,
        product_url=canonical,
        action_type=action_type,
        seconds=float(seconds),
        timestamp=now,
        session_id=state.current_session_id,
    )
    return dataclasses.replace(
        state,
        time_to_action_log=outbox.cap_oldest(
            state.time_to_action_log + (event,), max_entries, "Time-to-action"
        ),
    )


def start_session(state: StoreState, *, session_id: str) -> StoreState:
    return dataclasses.replace(state, current_session_id=session_id)


def end_session(state: StoreState) -> StoreState:
    if state.current_session_id is None:
        return state
    return dataclasses.replace(state, current_session_id=None)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def get_avg_time_to_action(state: StoreState, action_type: Optional[str] = None) -> int:
    """Mean seconds to bookmark/cart, rounded; 0 when there is nothing to average."""
    events = [
        e for e in state.time_to_action_log if action_type is None or e.action_type == action_type
    ]
    if not events:
        return 0
    return _round_half_up(sum(e.seconds for e in events) / len(events))


def get_cross_session_products(state: StoreState) -> List[str]:
    """Product URLs seen in more than one session, most sessions first."""
    sessions: Dict[str, Set[str]] = {}
    for interaction in state.product_interactions:
        if interaction.session_id:
            sessions.setdefault(interaction.product_url, set()).add(interaction.session_id)
    ranked = [(url, len(ids)) for url, ids in sessions.items() if len(ids) > 1]
    ranked.sort(key=lambda item: (-item[1], item[0]))
    return [url for url, _ in ranked]


def add_search(state: StoreState, query: str) -> StoreState:
    query = (query or "").strip()
    if not query:
        return state
    searches = (query,) + tuple(s for s in state.recent_searches if s != query)
    return dataclasses.replace(state, recent_searches=searches[:MAX_RECENT_SEARCHES])


def clear_searches(state: StoreState) -> StoreState:
    if not state.recent_searches:
        return state
    return dataclasses.replace(state, recent_searches=())


def acknowledge_buffers(
    state: StoreState,
    sent_interactions: Tuple[ProductInteraction, ...],
    sent_time_to_action: Tuple[TimeToActionEvent, ...],
) -> StoreState:
    """Drop the pushed analytics events; anything recorded since stays."""
    sent_ids = {e.client_event_id for e in sent_interactions}
    sent_ids.update(e.client_event_id for e in sent_time_to_action)
    if not sent_ids:
        return state
    return dataclasses.replace(
        state,
        product_interactions=tuple(
            e for e in state.product_interactions if e.client_event_id not in sent_ids
        ),
        time_to_action_log=tuple(
            e for e in state.time_to_action_log if e.client_event_id not in sent_ids
        ),
    )


def discard_unpushed(state: StoreState) -> StoreState:
    """Forget analytics that never left the device."""
    return dataclasses.replace(
        state,
        product_interactions=(),
        time_to_action_log=(),
        pending=outbox.drop_analytics(state.pending),
    )


def clear_analytics(state: StoreState, *, now: int) -> StoreState:
    """Wipe tracking data; bookmarks, collections and consent survive.

    Both clear markers are set so an older server snapshot cannot bring the
    wiped history or cart timelines back.
    """
    return dataclasses.replace(
        state,
        history=(),
        cart_history=(),
        product_interactions=(),
        time_to_action_log=(),
        recent_searches=(),
        tabs=(),
        current_tab_id=None,
        current_session_id=None,
        pending=outbox.drop_analytics(state.pending),
        meta=dataclasses.replace(state.meta, history_cleared_at=now, analytics_cleared_at=now),
    )
