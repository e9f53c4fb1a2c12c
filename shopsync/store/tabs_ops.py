"""Browser tab operations. Tabs are device-local and never queued."""

import dataclasses
from typing import Optional

from ..types import DEFAULT_TAB_TITLE, StoreState, Tab


def add_tab(state: StoreState, url: str, *, tab_id: str, title: str = DEFAULT_TAB_TITLE) -> StoreState:
    tab = Tab(id=tab_id, url=url, title=title or DEFAULT_TAB_TITLE)
    return dataclasses.replace(state, tabs=state.tabs + (tab,), current_tab_id=tab_id)


def remove_tab(state: StoreState, tab_id: str) -> StoreState:
    remaining = tuple(t for t in state.tabs if t.id != tab_id)
    if len(remaining) == len(state.tabs):
        return state
    current: Optional[str] = state.current_tab_id
    if not remaining:
        current = None
    elif current == tab_id:
        current = remaining[0].id
    return dataclasses.replace(state, tabs=remaining, current_tab_id=current)


def switch_tab(state: StoreState, tab_id: str) -> StoreState:
    if state.current_tab_id == tab_id or not any(t.id == tab_id for t in state.tabs):
        return state
    return dataclasses.replace(state, current_tab_id=tab_id)


def update_tab(state: StoreState, tab_id: str, url: str, title: str) -> StoreState:
    tabs = tuple(
        dataclasses.replace(t, url=url, title=title or t.title) if t.id == tab_id else t
        for t in state.tabs
    )
    if tabs == state.tabs:
        return state
    return dataclasses.replace(state, tabs=tabs)


def update_tab_screenshot(state: StoreState, tab_id: str, screenshot: str) -> StoreState:
    tabs = tuple(
        dataclasses.replace(t, screenshot=screenshot) if t.id == tab_id else t for t in state.tabs
    )
    if tabs == state.tabs:
        return state
    return dataclasses.replace(state, tabs=tabs)


def close_all_tabs(state: StoreState) -> StoreState:
    if not state.tabs and state.current_tab_id is None:
        return state
    return dataclasses.replace(state, tabs=(), current_tab_id=None)
