"""Tests for merging local and remote events into one view."""

from datetime import date, time

from honeybee.models import Event, EventIdentity, SyncState
from honeybee.sync import merge_events


def local_event(local_id, title, day=1, start=None, remote_id=None):
    identity = EventIdentity.local(local_id)
    status = SyncState.PENDING
    if remote_id is not None:
        identity = identity.with_remote(remote_id)
        status = SyncState.SYNCED
    return Event(
        identity=identity,
        title=title,
        date=date(2024, 1, day),
        start_time=start,
        status=status,
    )


def remote_event(remote_id, title, day=1, start=None):
    return Event(
        identity=EventIdentity.remote(remote_id),
        title=title,
        date=date(2024, 1, day),
        start_time=start,
        status=SyncState.SYNCED,
    )


class TestMergeEvents:
    """Tests for merge_events."""

    def test_ordering(self):
        """Pending local and remote events interleave by date then time."""
        local = [local_event(1, "L", day=2)]
        remote = [remote_event(10, "R", day=1, start=time(9, 0))]

        merged = merge_events(local, remote)

        assert [e.title for e in merged] == ["R", "L"]
        assert merged[1].status == SyncState.PENDING

    def test_remote_wins_for_same_key(self):
        local = [local_event(1, "Old title", remote_id=10)]
        remote = [remote_event(10, "New title")]

        [merged] = merge_events(local, remote)

        assert merged.title == "New title"
        assert merged.status == SyncState.SYNCED

    def test_keeps_local_cross_reference(self):
        local = [local_event(1, "Dinner", remote_id=10)]
        remote = [remote_event(10, "Dinner")]

        [merged] = merge_events(local, remote)

        assert merged.identity == EventIdentity(local_id=1, remote_id=10)

    def test_pending_copy_and_remote_appear_separately(self):
        """A pending record without a cross-reference has its own key."""
        local = [local_event(1, "Pending")]
        remote = [remote_event(10, "Other")]

        merged = merge_events(local, remote)

        assert {e.identity.view_key for e in merged} == {"local:1", "remote:10"}

    def test_idempotent(self):
        local = [local_event(1, "a", remote_id=10), local_event(2, "b")]
        remote = [remote_event(10, "a"), remote_event(11, "c", day=3)]

        once = merge_events(local, remote)
        twice = merge_events(once, remote)

        assert twice == once

    def test_no_duplicate_keys(self):
        local = [local_event(i, f"l{i}", remote_id=100 + i) for i in range(1, 4)]
        remote = [remote_event(100 + i, f"r{i}") for i in range(1, 6)]

        merged = merge_events(local, remote)
        keys = [e.identity.view_key for e in merged]

        assert len(keys) == len(set(keys)) == 5

    def test_untimed_first_within_day(self):
        remote = [
            remote_event(1, "timed", start=time(8, 0)),
            remote_event(2, "untimed"),
        ]

        assert [e.title for e in merge_events([], remote)] == ["untimed", "timed"]

    def test_empty_inputs(self):
        assert merge_events([], []) == []
