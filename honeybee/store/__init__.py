"""Device-local persistence for calendar events.

The store survives restarts and works without connectivity; it is the
durable source of truth for events not yet accepted remotely.
"""

from .local_store import SCHEMA_VERSION, LocalEventStore

__all__ = ["LocalEventStore", "SCHEMA_VERSION"]
