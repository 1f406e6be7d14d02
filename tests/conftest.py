"""Shared fixtures: an in-memory remote store that two partners can share."""

from datetime import date
from typing import Any

import pytest

from honeybee.exceptions import Forbidden, NetworkError, NotFoundError, ValidationError
from honeybee.models import Event, EventDraft, event_sort_key
from honeybee.remote import RemoteEventService
from honeybee.session import StaticSession
from honeybee.store import LocalEventStore
from honeybee.sync import SyncEngine


class FakeServer:
    """Authoritative event table shared by every FakeRemote."""

    def __init__(self):
        self.events: dict[int, dict[str, Any]] = {}
        self.online = True
        self.reject_titles: set[str] = set()
        self._next_id = 100

    def next_id(self) -> int:
        self._next_id += 1
        return self._next_id


class FakeRemote(RemoteEventService):
    """RemoteEventService backed by a FakeServer, as seen by one user."""

    def __init__(self, server: FakeServer, user_id: int, partner_id: int | None = None):
        self.server = server
        self.user_id = user_id
        self.partner_id = partner_id
        self.calls: list[tuple[str, Any]] = []

    def _check_online(self) -> None:
        if not self.server.online:
            raise NetworkError("connection refused")

    def _insert(self, fields: dict[str, Any]) -> dict[str, Any]:
        if not fields.get("title") or not fields.get("date"):
            raise ValidationError("title and date are required")
        record = {
            key: fields.get(key)
            for key in ("title", "description", "date", "start_time", "end_time", "location")
        }
        record.update({
            "id": self.server.next_id(),
            "created_by": self.user_id,
            "created_by_name": f"user-{self.user_id}",
        })
        self.server.events[record["id"]] = record
        return record

    def _owned(self, remote_id: int) -> dict[str, Any]:
        record = self.server.events.get(remote_id)
        if record is None:
            raise NotFoundError("Event not found")
        if record["created_by"] != self.user_id:
            raise Forbidden("Not authorized to modify this event")
        return record

    async def create(self, fields: dict[str, Any]) -> Event:
        self.calls.append(("create", fields))
        self._check_online()
        return Event.from_remote(dict(self._insert(fields)))

    async def update(self, remote_id: int, fields: dict[str, Any]) -> Event:
        self.calls.append(("update", remote_id))
        self._check_online()
        record = self._owned(remote_id)
        for key in ("title", "description", "date", "start_time", "end_time", "location"):
            if key in fields:
                record[key] = fields[key]
        return Event.from_remote(dict(record))

    async def delete(self, remote_id: int) -> None:
        self.calls.append(("delete", remote_id))
        self._check_online()
        self._owned(remote_id)
        del self.server.events[remote_id]

    async def sync_batch(self, events: list[Event]) -> dict[int, int]:
        self.calls.append(("sync_batch", [e.local_id for e in events]))
        self._check_online()
        accepted = {}
        for event in events:
            if event.title in self.server.reject_titles:
                continue
            record = self._insert(event.fields())
            accepted[event.local_id] = record["id"]
        return accepted

    async def list(self) -> list[Event]:
        self.calls.append(("list", None))
        self._check_online()
        members = {self.user_id, self.partner_id}
        events = [
            Event.from_remote(dict(record))
            for record in self.server.events.values()
            if record["created_by"] in members
        ]
        return sorted(events, key=event_sort_key)


def make_draft(title: str = "Dinner", day: str = "2024-01-01", **kwargs: Any) -> EventDraft:
    return EventDraft.from_fields({"title": title, "date": day, **kwargs})


@pytest.fixture
def store():
    """Create an in-memory LocalEventStore."""
    store = LocalEventStore(":memory:")
    store.connect()
    yield store
    store.close()


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def session():
    return StaticSession(user_id=1, token="token-1", partner_id=2)


@pytest.fixture
def remote(server):
    return FakeRemote(server, user_id=1, partner_id=2)


@pytest.fixture
def engine(store, remote, session):
    return SyncEngine(store, remote, session)


@pytest.fixture
def today():
    return date(2024, 1, 1)
