"""StoreState <-> JSON blob.

The dataclasses are validated through pydantic so a blob written by an older
build (missing fields, lists instead of tuples) still hydrates.
"""

import dataclasses

from pydantic import TypeAdapter

from ..types import StoreState

_STATE_ADAPTER = TypeAdapter(StoreState)


def dump_state(state: StoreState) -> str:
    """Serialize everything except the transient ``is_syncing`` flag."""
    persisted = dataclasses.replace(state, meta=dataclasses.replace(state.meta, is_syncing=False))
    return _STATE_ADAPTER.dump_json(persisted).decode("utf-8")


def load_state(raw: str) -> StoreState:
    """Parse a persisted blob.

    Raises:
        pydantic.ValidationError: If the blob is not a valid StoreState.
    """
    state = _STATE_ADAPTER.validate_json(raw)
    return dataclasses.replace(state, meta=dataclasses.replace(state.meta, is_syncing=False))
