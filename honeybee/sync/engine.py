"""Offline-first synchronization of the local event store with the remote store.

Writes are applied to the local store and published first, then propagated
to the remote store on a best-effort basis. Pending records stay durable
locally until a later sync cycle confirms them.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..exceptions import HoneybeeError, NetworkError, NotFoundError
from ..models import (
    Event,
    EventDraft,
    EventIdentity,
    SyncState,
    event_sort_key,
    normalize_fields,
)
from ..remote import RemoteEventService
from ..session import SessionProvider
from ..store import LocalEventStore
from .merge import merge_events
from .view import EventView, LoadState

if TYPE_CHECKING:
    from ..realtime import Notification, RealtimeClient

logger = logging.getLogger(__name__)

EventKey = int | EventIdentity


class SyncStatus(Enum):
    """Status of a sync operation."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Some pending events accepted
    FAILED = "failed"
    OFFLINE = "offline"  # Remote unavailable


@dataclass
class SyncResult:
    """Result of a sync operation."""

    status: SyncStatus
    entries_pushed: int = 0
    entries_pending: int = 0
    error: str | None = None
    timestamp: datetime | None = None


class SyncEngine:
    """Reconciles the local event store with the remote store.

    The engine is the only writer of its ``EventView``. Local state is
    always published before any remote call, so the view never waits on
    the network.
    """

    def __init__(
        self,
        store: LocalEventStore,
        remote: RemoteEventService,
        session: SessionProvider,
        view: EventView | None = None,
        notifier: "RealtimeClient | None" = None,
    ):
        """Initialize the sync engine.

        Args:
            store: Local event store.
            remote: Remote event service.
            session: Provider of the current caller.
            view: View to publish into; a new one is created if omitted.
            notifier: Realtime client broadcasting confirmed changes.
        """
        self.store = store
        self.remote = remote
        self.session = session
        self.view = view or EventView()
        self.notifier = notifier
        self._last_sync: datetime | None = None
        self._consecutive_failures = 0

    def set_notifier(self, notifier: "RealtimeClient | None") -> None:
        self.notifier = notifier

    # ==================== Helpers ====================

    @staticmethod
    def _identity(key: EventKey) -> EventIdentity:
        if isinstance(key, EventIdentity):
            return key
        return EventIdentity.local(int(key))

    def _find_local(self, identity: EventIdentity) -> Event | None:
        """Find the local record behind an identity, if there is one."""
        if identity.local_id is not None:
            try:
                return self.store.get(identity.local_id)
            except NotFoundError:
                return None
        return self.store.find_by_remote_id(identity.remote_id)

    def _shared_calendar(self, events: list[Event]) -> list[Event]:
        """Keep events created by the caller or the caller's partner."""
        members = self.session.current_caller().calendar_members
        return [e for e in events if e.created_by is None or e.created_by in members]

    def _upsert(self, event: Event, replaces: str | None = None) -> None:
        """Publish the view with ``event`` added or replacing an entry."""
        drop = {event.identity.view_key}
        if replaces:
            drop.add(replaces)
        events = [e for e in self.view.events if e.identity.view_key not in drop]
        events.append(event)
        self.view.publish(events=sorted(events, key=event_sort_key))

    def _surface(self, action: str, error: HoneybeeError) -> None:
        """Log a remote rejection and expose it on the view."""
        logger.error(f"Remote store rejected {action}: {error}")
        self.view.publish(error=error)

    async def _notify(self, kind: str, payload: dict[str, Any]) -> None:
        """Tell the partner about a confirmed change. Best-effort."""
        if self.notifier is None:
            return
        partner_id = self.session.current_caller().partner_id
        if partner_id is None:
            return
        try:
            await self.notifier.emit(kind, payload, partner_id)
        except Exception as e:
            logger.warning(f"Failed to notify partner of {kind} event: {e}")

    # ==================== Load ====================

    async def load_events(self) -> LoadState:
        """Publish local events, then merge in remote events when reachable.

        Returns:
            RECONCILED or OFFLINE_FALLBACK.

        Raises:
            PersistenceError: If the local store cannot be read.
        """
        self.view.publish(state=LoadState.LOADING_LOCAL)
        try:
            local = self.store.list()
        except HoneybeeError as e:
            self.view.publish(state=LoadState.IDLE, error=e)
            raise

        self.view.publish(events=local, state=LoadState.LOCAL_LOADED)
        self.view.publish(state=LoadState.SYNCING)

        try:
            remote = self._shared_calendar(await self.remote.list())
        except NetworkError as e:
            logger.info(f"Offline mode: using local data only ({e})")
            self.view.publish(state=LoadState.OFFLINE_FALLBACK)
            return LoadState.OFFLINE_FALLBACK
        except HoneybeeError as e:
            logger.error(f"Remote load failed, using local data only: {e}")
            self.view.publish(state=LoadState.OFFLINE_FALLBACK, error=e)
            return LoadState.OFFLINE_FALLBACK

        # Re-read so writes made while the remote call was in flight are kept
        merged = merge_events(self.store.list(), remote)
        self.view.publish(events=merged, state=LoadState.RECONCILED)
        logger.debug(f"Reconciled {len(merged)} events ({len(remote)} remote)")
        return LoadState.RECONCILED

    async def on_partner_change(self, notification: "Notification") -> None:
        """Reload after the partner changed an event."""
        logger.info(f"Partner {notification.kind.value} event, reloading")
        await self.load_events()

    # ==================== Mutations ====================

    async def create_event(self, draft: EventDraft | dict[str, Any]) -> Event:
        """Create an event locally, then propagate it to the remote store.

        Args:
            draft: Fields of the new event.

        Returns:
            The remote-confirmed event, or the pending local event if the
            remote store could not accept it.

        Raises:
            ValidationError: If required fields are missing.
            PersistenceError: If the local store cannot be written.
        """
        if isinstance(draft, dict):
            draft = EventDraft.from_fields(draft)
        if draft.created_by is None:
            draft = replace(draft, created_by=self.session.current_caller().user_id)

        local = self.store.create(draft)
        self._upsert(local)

        try:
            confirmed = await self.remote.create(
                {**local.fields(), "created_by": local.created_by}
            )
        except NetworkError as e:
            logger.info(f"Event {local.identity} saved locally, will sync when online ({e})")
            return local
        except HoneybeeError as e:
            self._surface(f"create of {local.identity}", e)
            return local

        try:
            synced = self.store.mark_synced(local.local_id, confirmed.remote_id)
        except NotFoundError:
            logger.warning(f"Event {local.identity} was deleted while being created remotely")
            return confirmed

        canonical = replace(confirmed, identity=synced.identity, status=SyncState.SYNCED)
        self._upsert(canonical, replaces=local.identity.view_key)
        await self._notify("created", canonical.to_dict())
        return canonical

    async def update_event(self, key: EventKey, patch: dict[str, Any]) -> Event:
        """Update an event locally, then propagate if it is known remotely.

        Args:
            key: Local id, or the identity of an entry in the view.
            patch: Fields to change.

        Returns:
            The updated event as published in the view.

        Raises:
            NotFoundError: If the event does not exist.
            ValidationError: If the patch is invalid.
        """
        identity = self._identity(key)
        changes = normalize_fields(patch)
        local = self._find_local(identity)

        if local is not None:
            updated = self.store.update(local.local_id, changes)
            base = self.view.find(updated.identity.view_key)
            if base is None:
                entry = updated
            else:
                entry = replace(
                    base,
                    **changes,
                    identity=updated.identity,
                    updated_at=updated.updated_at,
                )
        elif identity.local_id is not None:
            raise NotFoundError(f"No local event with id {identity.local_id}")
        else:
            base = self.view.find(identity.view_key)
            if base is None:
                raise NotFoundError(f"No event {identity} in view")
            entry = replace(base, **changes)

        self._upsert(entry)

        remote_id = entry.remote_id
        if remote_id is None:
            return entry

        try:
            confirmed = await self.remote.update(remote_id, entry.fields())
        except NetworkError as e:
            logger.info(f"Event {entry.identity} updated locally, will sync when online ({e})")
            return entry
        except HoneybeeError as e:
            self._surface(f"update of {entry.identity}", e)
            return entry

        canonical = replace(confirmed, identity=entry.identity, status=SyncState.SYNCED)
        self._upsert(canonical)
        await self._notify("updated", canonical.to_dict())
        return canonical

    async def delete_event(self, key: EventKey) -> None:
        """Delete an event remotely first, then locally.

        The view entry is removed immediately. Network failures and a
        remote "not found" do not stop the local delete. Authorization
        failures restore the previous view and propagate.

        Args:
            key: Local id, or the identity of an entry in the view.

        Raises:
            Unauthorized: If the caller may not delete the event remotely.
            PersistenceError: If the local store cannot be written.
        """
        identity = self._identity(key)
        local = self._find_local(identity)

        if local is not None:
            identity = local.identity
        remote_id = identity.remote_id

        previous = self.view.snapshot
        entry = previous.find(identity.view_key) or local
        if entry is not None:
            deleted_payload = entry.to_dict()
        else:
            deleted_payload = {
                "id": remote_id,
                "local_id": identity.local_id,
                "key": identity.view_key,
            }
        self.view.publish(
            events=[e for e in previous.events if e.identity.view_key != identity.view_key]
        )

        try:
            if remote_id is not None:
                try:
                    await self.remote.delete(remote_id)
                except NotFoundError:
                    logger.info(f"Remote event {remote_id} already deleted")
                except NetworkError as e:
                    logger.info(f"Event {identity} deleted locally, remote delete failed ({e})")
                else:
                    await self._notify("deleted", deleted_payload)

            if local is not None:
                self.store.delete(local.local_id)
        except Exception:
            self.view.publish(events=previous.events)
            raise

    # ==================== Sync ====================

    async def sync_events(self) -> SyncResult:
        """Push pending events in one batch, then reload.

        Events the remote does not accept stay pending for the next cycle.

        Returns:
            SyncResult with push statistics.
        """
        pending = self.store.list_unsynced()
        pushed = 0
        batch_error: HoneybeeError | None = None

        if pending:
            try:
                accepted = await self.remote.sync_batch(pending)
            except NetworkError as e:
                logger.info(f"Sync push skipped, remote unavailable: {e}")
                batch_error = e
                accepted = {}
            except HoneybeeError as e:
                self._surface("sync batch", e)
                batch_error = e
                accepted = {}

            for local_id, remote_id in accepted.items():
                try:
                    synced = self.store.mark_synced(local_id, remote_id)
                except NotFoundError:
                    logger.warning(f"Local event {local_id} deleted before sync completed")
                    continue
                pushed += 1
                await self._notify("created", synced.to_dict())

        state = await self.load_events()
        still_pending = len(pending) - pushed
        now = datetime.now()

        if batch_error is not None and not isinstance(batch_error, NetworkError):
            self._consecutive_failures += 1
            return SyncResult(
                status=SyncStatus.FAILED,
                entries_pending=still_pending,
                error=str(batch_error),
                timestamp=now,
            )

        if isinstance(batch_error, NetworkError) or (
            state == LoadState.OFFLINE_FALLBACK and not pushed
        ):
            self._consecutive_failures += 1
            return SyncResult(
                status=SyncStatus.OFFLINE,
                entries_pending=still_pending,
                error=str(batch_error) if batch_error else None,
                timestamp=now,
            )

        self._consecutive_failures = 0
        self._last_sync = now
        return SyncResult(
            status=SyncStatus.SUCCESS if still_pending == 0 else SyncStatus.PARTIAL,
            entries_pushed=pushed,
            entries_pending=still_pending,
            timestamp=now,
        )

    async def sync_loop(
        self,
        interval_seconds: int = 300,
        stop_event: asyncio.Event | None = None,
        max_backoff_seconds: int = 3600,
    ) -> None:
        """Run continuous sync loop.

        Args:
            interval_seconds: Seconds between sync attempts.
            stop_event: Event to signal loop should stop.
            max_backoff_seconds: Upper bound for the wait after failures.
        """
        logger.info(f"Starting sync loop with {interval_seconds}s interval")

        while True:
            if stop_event and stop_event.is_set():
                break

            try:
                result = await self.sync_events()
                logger.info(
                    f"Sync: {result.status.value}, "
                    f"pushed={result.entries_pushed}, "
                    f"pending={result.entries_pending}"
                )
            except Exception as e:
                logger.error(f"Sync loop error: {e}")

            # Adaptive interval: back off if consecutive failures
            wait_time = interval_seconds
            if self._consecutive_failures > 0:
                wait_time = min(
                    interval_seconds * (2 ** self._consecutive_failures),
                    max_backoff_seconds,
                )
                logger.debug(f"Backing off sync for {wait_time}s")

            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=wait_time)
                    break  # Stop event was set
                except asyncio.TimeoutError:
                    pass  # Normal timeout, continue loop
            else:
                await asyncio.sleep(wait_time)

        logger.info("Sync loop stopped")

    @property
    def last_sync(self) -> datetime | None:
        """Get timestamp of last successful sync."""
        return self._last_sync

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with sync statistics.
        """
        stats = self.store.get_stats()

        return {
            "state": self.view.state.value,
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "consecutive_failures": self._consecutive_failures,
            "pending_events": stats["pending_events"],
            "total_events": stats["total_events"],
            "visible_events": len(self.view.events),
            "error": str(self.view.error) if self.view.error else None,
        }
