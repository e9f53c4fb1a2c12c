"""Local store: state container, outbox and per-entity operations."""

from .local_store import DEFAULT_STORE_NAME, LocalStore

__all__ = ["LocalStore", "DEFAULT_STORE_NAME"]
