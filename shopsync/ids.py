"""Client-side identifiers."""

import uuid
from typing import Any, Callable


class IdempotencyKeyGenerator:
    """Issues ``client_event_id`` values for analytics events.

    The server deduplicates retried pushes on this key, so every event gets a
    fresh UUIDv4 when it is recorded, never when it is sent.
    """

    def __init__(self, factory: Callable[[], uuid.UUID] = uuid.uuid4):
        self._factory = factory

    def new_event_id(self) -> str:
        return str(self._factory())

    def new_id(self) -> str:
        return str(self._factory())


def is_valid_uuid(value: Any) -> bool:
    """True when *value* is a canonical UUID string."""
    if not isinstance(value, str):
        return False
    try:
        return str(uuid.UUID(value)) == value.lower()
    except ValueError:
        return False


def stable_event_id(*parts: Any) -> str:
    """Deterministic id for server events that arrive without one."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, "|".join(str(p) for p in parts)))
