"""Observable holder for the published event view."""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable

from ..exceptions import HoneybeeError
from ..models import Event

logger = logging.getLogger(__name__)


class LoadState(Enum):
    """Stage of the current load cycle."""

    IDLE = "idle"
    LOADING_LOCAL = "loading_local"
    LOCAL_LOADED = "local_loaded"  # Local data visible, remote not yet merged
    SYNCING = "syncing"
    RECONCILED = "reconciled"
    OFFLINE_FALLBACK = "offline_fallback"  # Remote unavailable, local data visible


@dataclass(frozen=True)
class ViewSnapshot:
    """Immutable state of the view at one point in time."""

    events: tuple[Event, ...] = ()
    state: LoadState = LoadState.IDLE
    error: HoneybeeError | None = None
    version: int = 0

    def find(self, view_key: str) -> Event | None:
        for event in self.events:
            if event.identity.view_key == view_key:
                return event
        return None


Subscriber = Callable[[ViewSnapshot], None]

_UNSET: Any = object()


class EventView:
    """Published list of events with a single writer and many readers.

    The sync engine is the only writer. Each change replaces the whole
    snapshot, so a reader holding an older snapshot never sees it change.
    """

    def __init__(self) -> None:
        self._snapshot = ViewSnapshot()
        self._subscribers: list[Subscriber] = []

    @property
    def snapshot(self) -> ViewSnapshot:
        return self._snapshot

    @property
    def events(self) -> tuple[Event, ...]:
        return self._snapshot.events

    @property
    def state(self) -> LoadState:
        return self._snapshot.state

    @property
    def error(self) -> HoneybeeError | None:
        return self._snapshot.error

    def find(self, view_key: str) -> Event | None:
        return self._snapshot.find(view_key)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback for every new snapshot.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(
        self,
        events: list[Event] | tuple[Event, ...] | None = None,
        state: LoadState | None = None,
        error: HoneybeeError | None = _UNSET,
    ) -> ViewSnapshot:
        """Replace the snapshot and notify subscribers.

        Args:
            events: New event list, or None to keep the current one.
            state: New load state, or None to keep the current one.
            error: Error to surface; omitted keeps the current one.

        Returns:
            The new snapshot.
        """
        changes: dict[str, Any] = {"version": self._snapshot.version + 1}
        if events is not None:
            changes["events"] = tuple(events)
        if state is not None:
            changes["state"] = state
        if error is not _UNSET:
            changes["error"] = error

        self._snapshot = replace(self._snapshot, **changes)
        snapshot = self._snapshot

        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"View subscriber failed: {e}")

        return snapshot

    def clear_error(self) -> None:
        self.publish(error=None)
