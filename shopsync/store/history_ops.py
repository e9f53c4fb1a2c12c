"""Browsing history operations for LocalStore.

History is consent gated by the caller. Entries are keyed by canonical URL,
ordered most recent first and capped at the configured limit.
"""

import dataclasses
import logging
from typing import Dict, List, Optional, Tuple

from ..types import HistoryEntry, StoreState
from ..urls import canonicalize_url, hostname_of, is_cart_url
from . import outbox

logger = logging.getLogger(__name__)


def add_to_history(
    state: StoreState,
    url: str,
    title: str,
    source: str,
    *,
    now: int,
    limit: int,
    brand: Optional[str] = None,
) -> StoreState:
    """Record a page visit.

    A repeat visit bumps ``visit_count``, refreshes ``visited_at`` and moves
    the entry to the front. URLs that cannot be parsed are dropped.
    """
    canonical = canonicalize_url(url)
    if canonical is None:
        logger.debug("Dropping history entry with unparseable URL")
        return state

    existing = next((h for h in state.history if h.url == canonical), None)
    if existing is not None:
        entry = dataclasses.replace(
            existing,
            title=title or existing.title,
            visited_at=now,
            visit_count=existing.visit_count + 1,
            session_id=state.current_session_id or existing.session_id,
            brand=brand or existing.brand,
        )
    else:
        entry = HistoryEntry(
            url=canonical,
            title=title or canonical,
            source=source or hostname_of(canonical),
            visited_at=now,
            session_id=state.current_session_id,
            brand=brand,
            is_cart_page=is_cart_url(canonical),
        )

    history = (entry,) + tuple(h for h in state.history if h.url != canonical)
    return dataclasses.replace(
        state,
        history=history[:limit],
        pending=outbox.queue_history(state.pending, entry),
    )


def update_history_metadata(
    state: StoreState,
    url: str,
    dwell_time: Optional[float] = None,
    scroll_depth: Optional[float] = None,
) -> StoreState:
    canonical = canonicalize_url(url)
    existing = next((h for h in state.history if h.url == canonical), None)
    if existing is None:
        return state

    changes: Dict[str, object] = {"is_cart_page": is_cart_url(existing.url)}
    if dwell_time is not None:
        changes["dwell_time"] = max(0.0, float(dwell_time))
    if scroll_depth is not None:
        changes["scroll_depth"] = min(100.0, max(0.0, float(scroll_depth)))
    entry = dataclasses.replace(existing, **changes)
    if entry == existing:
        return state
    return dataclasses.replace(
        state,
        history=tuple(entry if h.url == existing.url else h for h in state.history),
        pending=outbox.queue_history(state.pending, entry),
    )


def clear_history(state: StoreState, *, now: int) -> StoreState:
    """Empty local history and remember when, so older snapshots stay out."""
    return dataclasses.replace(
        state,
        history=(),
        pending=outbox.drop_history(state.pending),
        meta=dataclasses.replace(state.meta, history_cleared_at=now),
    )


def get_recent_history(state: StoreState, limit: int = 10) -> List[HistoryEntry]:
    return sorted(state.history, key=lambda h: h.visited_at, reverse=True)[:limit]


def get_most_visited(state: StoreState, limit: int = 10) -> List[HistoryEntry]:
    return sorted(state.history, key=lambda h: (h.visit_count, h.visited_at), reverse=True)[:limit]


def get_top_shops(state: StoreState, limit: int = 5) -> List[Tuple[str, int]]:
    """Sources ranked by total visits, as ``(source, visits)`` pairs."""
    counts: Dict[str, int] = {}
    for entry in state.history:
        source = entry.source or hostname_of(entry.url)
        counts[source] = counts.get(source, 0) + entry.visit_count
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:limit]
