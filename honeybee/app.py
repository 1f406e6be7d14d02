"""Application wiring for a Honeybee calendar client."""

import asyncio
import logging

from .config import Config
from .realtime import RealtimeClient
from .remote import HttpEventService, RemoteEventService
from .session import SessionProvider, StaticSession
from .store import LocalEventStore
from .sync import EventView, SyncEngine

logger = logging.getLogger(__name__)


class CalendarApp:
    """Coordinates the local store, remote service, sync engine and realtime client."""

    def __init__(
        self,
        config: Config,
        session: SessionProvider | None = None,
        store: LocalEventStore | None = None,
        remote: RemoteEventService | None = None,
        realtime: RealtimeClient | None = None,
    ):
        self.config = config
        self.session = session or StaticSession(
            user_id=config.session.user_id,
            token=config.session.token,
            partner_id=config.session.partner_id,
        )
        self.store = store or LocalEventStore(config.store.db_path)
        self.remote = remote or HttpEventService(
            base_url=config.server.api_url,
            session=self.session,
            timeout=config.server.timeout_seconds,
            max_retries=config.server.max_retries,
            retry_backoff=config.server.retry_backoff_seconds,
        )
        self.view = EventView()
        self.engine = SyncEngine(self.store, self.remote, self.session, view=self.view)

        self.realtime: RealtimeClient | None = realtime
        if self.realtime is None and config.realtime.enabled:
            self.realtime = RealtimeClient(config.realtime)
        if self.realtime is not None:
            self.realtime.set_on_change(self.engine.on_partner_change)
            self.engine.set_notifier(self.realtime)

        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Open the store, join the realtime rooms and publish the first view."""
        logger.info("Starting Honeybee calendar client")
        self._stop_event.clear()

        self.store.connect()
        logger.info("Local event store connected")

        if self.realtime is not None:
            if self.session.is_authenticated:
                caller = self.session.current_caller()
                connected = await self.realtime.connect(
                    self.session.credential(), caller.user_id, caller.partner_id
                )
                if not connected:
                    logger.warning("Realtime channel unavailable, relying on periodic sync")
            else:
                logger.warning("Not signed in, realtime channel disabled")

        await self.engine.load_events()

        if self.realtime is not None:
            self._tasks.append(
                asyncio.create_task(self.realtime.listen(stop_event=self._stop_event))
            )

        if self.config.sync.enabled:
            self._tasks.append(
                asyncio.create_task(
                    self.engine.sync_loop(
                        interval_seconds=self.config.sync.interval_seconds,
                        stop_event=self._stop_event,
                        max_backoff_seconds=self.config.sync.max_backoff_seconds,
                    )
                )
            )
            logger.info("Sync loop started")

        self._running = True
        logger.info("Honeybee calendar client started")

    async def wait(self) -> None:
        """Block until ``stop()`` is called."""
        await self._stop_event.wait()

    async def stop(self) -> None:
        """Stop background tasks and release connections."""
        logger.info("Stopping Honeybee calendar client...")
        self._running = False
        self._stop_event.set()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks.clear()

        if self.realtime is not None:
            await self.realtime.disconnect()
        await self.remote.close()
        self.store.close()

        logger.info("Honeybee calendar client stopped")

    async def logout(self) -> None:
        """Sign out: leave the realtime rooms and stop syncing."""
        await self.stop()
        if isinstance(self.session, StaticSession):
            self.session.logout()


async def run_app(config: Config) -> None:
    """Run the calendar client until interrupted.

    Args:
        config: Configuration for the client.
    """
    app = CalendarApp(config)

    try:
        await app.start()
        await app.wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        await app.stop()
