"""Reconciliation of local and remote event lists."""

from dataclasses import replace

from ..models import Event, SyncState, event_sort_key


def merge_events(local: list[Event], remote: list[Event]) -> list[Event]:
    """Merge local and remote events into one view, remote wins.

    Local events are keyed by their remote cross-reference when they have
    one, else by a local-scoped key. Remote events overwrite any local
    entry with the same key, so a pending copy and its confirmed
    counterpart appear once.

    Args:
        local: Events from the local store.
        remote: Events from the remote store.

    Returns:
        Merged events, by date then start time (untimed first).
    """
    merged: dict[str, Event] = {}

    for event in local:
        merged[event.identity.view_key] = event

    for event in remote:
        previous = merged.get(event.identity.view_key)
        identity = event.identity
        # Keep the local cross-reference so the merged entry stays editable
        if previous is not None and previous.local_id is not None:
            identity = previous.identity.with_remote(event.remote_id)
        merged[event.identity.view_key] = replace(
            event, identity=identity, status=SyncState.SYNCED
        )

    return sorted(merged.values(), key=event_sort_key)
