"""Synchronization between the local event store and the remote store.

Provides the offline-first sync engine, the merge used for reconciliation
and the observable view the engine publishes into.
"""

from .engine import SyncEngine, SyncResult, SyncStatus
from .merge import merge_events
from .view import EventView, LoadState, ViewSnapshot

__all__ = [
    "EventView",
    "LoadState",
    "SyncEngine",
    "SyncResult",
    "SyncStatus",
    "ViewSnapshot",
    "merge_events",
]
