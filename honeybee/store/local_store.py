"""Device-local SQLite store for calendar events.

Every event carries a sync status and, once the remote store accepted it, a
cross-reference to its remote id. Each mutation commits before returning, so
a crash loses at most the call in flight.
"""

import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from ..exceptions import NotFoundError, PersistenceError
from ..models import (
    Event,
    EventDraft,
    EventIdentity,
    SyncState,
    format_time,
    normalize_fields,
    parse_date,
    parse_time,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Current events table
EVENTS_SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    description TEXT,
    date TEXT NOT NULL,
    start_time TEXT,
    end_time TEXT,
    location TEXT,
    created_by INTEGER,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    synced INTEGER DEFAULT 0,
    remote_id INTEGER
);

CREATE INDEX IF NOT EXISTS idx_events_date ON events(date, start_time);
CREATE INDEX IF NOT EXISTS idx_events_synced ON events(synced);
CREATE INDEX IF NOT EXISTS idx_events_remote ON events(remote_id);
"""

EVENT_COLUMNS = (
    "id, title, description, date, start_time, end_time, location, "
    "created_by, created_at, updated_at, synced, remote_id"
)

# Untimed events sort before timed ones on the same day
ORDER_BY = "date ASC, start_time IS NOT NULL, start_time ASC, id ASC"


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}


def _migrate_to_v1(conn: sqlite3.Connection) -> None:
    """Create the events table, upgrading the legacy single-time shape.

    Databases written before versioning may carry a ``time`` column instead
    of the start/end pair; the old value is copied to both.
    """
    columns = _columns(conn, "events")
    if not columns:
        conn.executescript(EVENTS_SCHEMA)
        return

    if "time" in columns and "start_time" not in columns:
        conn.execute("ALTER TABLE events ADD COLUMN start_time TEXT")
        conn.execute("ALTER TABLE events ADD COLUMN end_time TEXT")
        conn.execute(
            "UPDATE events SET start_time = time, end_time = time "
            "WHERE time IS NOT NULL"
        )
        logger.info("Migrated events table: time -> start_time/end_time")

    for column, ddl in (
        ("synced", "synced INTEGER DEFAULT 0"),
        ("remote_id", "remote_id INTEGER"),
        ("updated_at", "updated_at TEXT"),
    ):
        if column not in _columns(conn, "events"):
            conn.execute(f"ALTER TABLE events ADD COLUMN {ddl}")

    conn.executescript(EVENTS_SCHEMA)


# Ordered upgrade steps: MIGRATIONS[n] upgrades version n to n + 1
MIGRATIONS: list[Callable[[sqlite3.Connection], None]] = [
    _migrate_to_v1,
]


class LocalEventStore:
    """SQLite-backed durable cache of calendar events."""

    def __init__(self, db_path: str | Path):
        """Initialize the local store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = Path(db_path).expanduser() if str(db_path) != ":memory:" else None
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def location(self) -> str:
        return str(self.db_path) if self.db_path else ":memory:"

    def connect(self) -> None:
        """Open the database and bring its schema up to date."""
        if self._conn is not None:
            return

        try:
            if self.db_path is not None:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.location, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._migrate()
        except (sqlite3.Error, OSError) as e:
            self._conn = None
            raise PersistenceError(f"Cannot open event store at {self.location}: {e}") from e

        logger.info(f"LocalEventStore connected to {self.location}")

    def _migrate(self) -> None:
        """Run pending schema migrations once, before the first read."""
        conn = self._conn
        version = conn.execute("PRAGMA user_version").fetchone()[0]
        if version >= SCHEMA_VERSION:
            return

        with conn:
            for step in range(version, SCHEMA_VERSION):
                MIGRATIONS[step](conn)
            conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

        logger.info(f"Event store schema upgraded from v{version} to v{SCHEMA_VERSION}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.info("LocalEventStore connection closed")

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure we have a database connection."""
        if self._conn is None:
            self.connect()
        return self._conn

    def _row_to_event(self, row: sqlite3.Row) -> Event:
        remote_id = row["remote_id"]
        identity = EventIdentity(local_id=row["id"], remote_id=remote_id)
        synced = bool(row["synced"]) and remote_id is not None
        return Event(
            identity=identity,
            title=row["title"],
            description=row["description"],
            date=parse_date(row["date"]),
            start_time=parse_time(row["start_time"]),
            end_time=parse_time(row["end_time"]),
            location=row["location"],
            created_by=row["created_by"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
            status=SyncState.SYNCED if synced else SyncState.PENDING,
        )

    def _query(self, sql: str, params: tuple = ()) -> list[Event]:
        conn = self._ensure_connected()
        try:
            rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read events: {e}") from e
        return [self._row_to_event(row) for row in rows]

    def _write(self, sql: str, params: tuple) -> sqlite3.Cursor:
        """Execute a single mutation and commit it before returning."""
        conn = self._ensure_connected()
        try:
            with conn:
                return conn.execute(sql, params)
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to write event store: {e}") from e

    # ==================== Reads ====================

    def list_unsynced(self) -> list[Event]:
        """Events not yet accepted by the remote store."""
        return self._query(
            f"SELECT {EVENT_COLUMNS} FROM events "
            f"WHERE synced = 0 OR remote_id IS NULL ORDER BY {ORDER_BY}"
        )

    def list(self) -> list[Event]:
        """All locally known events, by date then start time."""
        return self._query(f"SELECT {EVENT_COLUMNS} FROM events ORDER BY {ORDER_BY}")

    def get(self, local_id: int) -> Event:
        """Get a single event by local id.

        Raises:
            NotFoundError: If no record has that local id.
        """
        events = self._query(
            f"SELECT {EVENT_COLUMNS} FROM events WHERE id = ?", (local_id,)
        )
        if not events:
            raise NotFoundError(f"No local event with id {local_id}")
        return events[0]

    def find_by_remote_id(self, remote_id: int) -> Event | None:
        """Find the local copy cross-referencing a remote id, if any."""
        events = self._query(
            f"SELECT {EVENT_COLUMNS} FROM events WHERE remote_id = ? ORDER BY id LIMIT 1",
            (remote_id,),
        )
        return events[0] if events else None

    # ==================== Mutations ====================

    def create(self, draft: EventDraft) -> Event:
        """Store a new pending event.

        Args:
            draft: Fields of the new event.

        Returns:
            The stored event including its new local id.

        Raises:
            ValidationError: If required fields are missing.
            PersistenceError: If the event cannot be written.
        """
        draft.validate()
        now = datetime.now().isoformat()

        with self._lock:
            cursor = self._write(
                """
                INSERT INTO events (
                    title, description, date, start_time, end_time,
                    location, created_by, created_at, updated_at, synced
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0)
                """,
                (
                    draft.title.strip(),
                    draft.description,
                    draft.date.isoformat(),
                    format_time(draft.start_time),
                    format_time(draft.end_time),
                    draft.location,
                    draft.created_by,
                    now,
                    now,
                ),
            )
            local_id = cursor.lastrowid

        logger.debug(f"Created local event {local_id}")
        return self.get(local_id)

    def update(self, local_id: int, fields: dict[str, Any]) -> Event:
        """Merge fields into an existing event and refresh ``updated_at``.

        Args:
            local_id: Local id of the event.
            fields: Partial editable fields (legacy ``time`` accepted).

        Returns:
            The updated event.

        Raises:
            NotFoundError: If no record has that local id.
            ValidationError: On unknown fields or an empty title.
        """
        changes = normalize_fields(fields)

        values: list[Any] = []
        assignments: list[str] = []
        for key, value in changes.items():
            if key == "date":
                value = value.isoformat()
            elif key in ("start_time", "end_time"):
                value = format_time(value)
            assignments.append(f"{key} = ?")
            values.append(value)

        assignments.append("updated_at = ?")
        values.append(datetime.now().isoformat())

        with self._lock:
            cursor = self._write(
                f"UPDATE events SET {', '.join(assignments)} WHERE id = ?",
                (*values, local_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"No local event with id {local_id}")

        return self.get(local_id)

    def delete(self, local_id: int) -> bool:
        """Remove an event. Deleting an absent id is not an error.

        Returns:
            True if a record was removed.
        """
        with self._lock:
            cursor = self._write("DELETE FROM events WHERE id = ?", (local_id,))
        return cursor.rowcount > 0

    def mark_synced(self, local_id: int, remote_id: int) -> Event:
        """Record that the remote store accepted an event under ``remote_id``.

        Raises:
            NotFoundError: If no record has that local id.
        """
        with self._lock:
            cursor = self._write(
                "UPDATE events SET synced = 1, remote_id = ? WHERE id = ?",
                (remote_id, local_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"No local event with id {local_id}")

        logger.debug(f"Local event {local_id} synced as remote {remote_id}")
        return self.get(local_id)

    # ==================== Maintenance ====================

    def schema_version(self) -> int:
        conn = self._ensure_connected()
        return conn.execute("PRAGMA user_version").fetchone()[0]

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics.

        Returns:
            Dictionary with counts and schema information.
        """
        conn = self._ensure_connected()
        try:
            total = conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
            pending = conn.execute(
                "SELECT COUNT(*) FROM events WHERE synced = 0 OR remote_id IS NULL"
            ).fetchone()[0]
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read events: {e}") from e

        return {
            "db_path": self.location,
            "schema_version": self.schema_version(),
            "total_events": total,
            "pending_events": pending,
            "synced_events": total - pending,
        }
