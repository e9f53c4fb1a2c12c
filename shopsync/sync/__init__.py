"""Sync: merge rules, wire codec, transport, orchestration."""

from .lifecycle import LifecycleSync
from .merge import MERGE_RULES, MergeResolver, MergeRule
from .orchestrator import SyncOrchestrator
from .transport import SyncTransport

__all__ = [
    "LifecycleSync",
    "MERGE_RULES",
    "MergeResolver",
    "MergeRule",
    "SyncOrchestrator",
    "SyncTransport",
]
