"""
shopsync - Offline-first sync engine for the shopping client.

Local mutations land in a LocalStore and its outbox; the SyncOrchestrator
pushes them and folds the server's canonical snapshot back in.
"""

from .store import LocalStore
from .sync import LifecycleSync, SyncOrchestrator

try:
    from importlib.metadata import version

    __version__ = version("shopsync")
except Exception:
    __version__ = "0.0.0"

__all__ = ["LocalStore", "SyncOrchestrator", "LifecycleSync"]
