"""Event data model shared by the local store, remote service and sync engine."""

from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from enum import Enum
from typing import Any

from .exceptions import ValidationError

# Fields a caller may change on an existing event
EDITABLE_FIELDS = ("title", "description", "date", "start_time", "end_time", "location")


class SyncState(Enum):
    """Whether the remote store has accepted an event."""

    PENDING = "pending"
    SYNCED = "synced"


class IdentityKind(Enum):
    """Which identity spaces an event is known in."""

    LOCAL = "local"  # Only in the local store, not yet accepted remotely
    REMOTE = "remote"  # Fetched from the remote store, not cached locally
    BOTH = "both"  # Local record carrying its remote cross-reference


@dataclass(frozen=True)
class EventIdentity:
    """Tagged identity of an event across the local and remote id spaces."""

    local_id: int | None = None
    remote_id: int | None = None

    def __post_init__(self) -> None:
        if self.local_id is None and self.remote_id is None:
            raise ValueError("EventIdentity needs a local or a remote id")

    @classmethod
    def local(cls, local_id: int) -> "EventIdentity":
        return cls(local_id=local_id)

    @classmethod
    def remote(cls, remote_id: int) -> "EventIdentity":
        return cls(remote_id=remote_id)

    def with_remote(self, remote_id: int) -> "EventIdentity":
        """Return the Both identity once the remote store assigned an id."""
        return EventIdentity(local_id=self.local_id, remote_id=remote_id)

    @property
    def kind(self) -> IdentityKind:
        if self.local_id is not None and self.remote_id is not None:
            return IdentityKind.BOTH
        if self.remote_id is not None:
            return IdentityKind.REMOTE
        return IdentityKind.LOCAL

    @property
    def view_key(self) -> str:
        """Key under which the event appears in the merged view.

        A pending local copy and its remote-confirmed counterpart share the
        same key, so the view never shows the same event twice.
        """
        if self.remote_id is not None:
            return f"remote:{self.remote_id}"
        return f"local:{self.local_id}"

    def __str__(self) -> str:
        return self.view_key


def parse_date(value: Any) -> date:
    """Parse a calendar date from a date, datetime or ISO string.

    Remote stores may serialize dates as full timestamps
    ("2024-01-01T00:00:00.000Z"), only the date part is kept.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        raise ValidationError("date is required")
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as e:
        raise ValidationError(f"Invalid date: {value!r}") from e


def parse_time(value: Any) -> time | None:
    """Parse an optional time of day ("09:00" or "09:00:00")."""
    if value is None or value == "":
        return None
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(str(value))
    except ValueError as e:
        raise ValidationError(f"Invalid time: {value!r}") from e


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def format_time(value: time | None) -> str | None:
    return value.isoformat() if value is not None else None


def normalize_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Validate and parse a partial set of editable event fields.

    Accepts the legacy single ``time`` field as an alias for ``start_time``.

    Raises:
        ValidationError: On unknown fields, an empty title or bad values.
    """
    normalized: dict[str, Any] = {}
    for key, value in fields.items():
        if key == "time":
            key = "start_time"
        if key not in EDITABLE_FIELDS:
            raise ValidationError(f"Unknown event field: {key}")

        if key == "title":
            if not value or not str(value).strip():
                raise ValidationError("title is required")
            value = str(value).strip()
        elif key == "date":
            value = parse_date(value)
        elif key in ("start_time", "end_time"):
            value = parse_time(value)
        elif value == "":
            value = None

        normalized[key] = value
    return normalized


@dataclass
class EventDraft:
    """Fields of an event the user is about to create."""

    title: str
    date: date
    description: str | None = None
    start_time: time | None = None
    end_time: time | None = None
    location: str | None = None
    created_by: int | None = None

    @classmethod
    def from_fields(cls, fields: dict[str, Any]) -> "EventDraft":
        """Build a draft from loosely-typed input (CLI, JSON, legacy shapes).

        A legacy single ``time`` value is copied to both start and end.
        """
        data = dict(fields)
        created_by = data.pop("created_by", None)
        if "time" in data and "start_time" not in data:
            legacy = data.pop("time")
            data["start_time"] = legacy
            data.setdefault("end_time", legacy)
        else:
            data.pop("time", None)

        if "title" not in data:
            raise ValidationError("title is required")
        if "date" not in data:
            raise ValidationError("date is required")

        normalized = normalize_fields(data)
        return cls(created_by=created_by, **normalized)

    def validate(self) -> None:
        """Check required fields.

        Raises:
            ValidationError: If title or date are missing.
        """
        if not self.title or not self.title.strip():
            raise ValidationError("title is required")
        if self.date is None:
            raise ValidationError("date is required")

    @property
    def is_all_day(self) -> bool:
        return self.start_time is None and self.end_time is None


@dataclass
class Event:
    """A calendar event as seen by the local store or the merged view."""

    identity: EventIdentity
    title: str
    date: date
    description: str | None = None
    start_time: time | None = None
    end_time: time | None = None
    location: str | None = None
    created_by: int | None = None
    created_by_name: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    status: SyncState = SyncState.PENDING
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_all_day(self) -> bool:
        return self.start_time is None and self.end_time is None

    @property
    def time(self) -> time | None:
        """Legacy single time field."""
        return self.start_time

    @property
    def is_synced(self) -> bool:
        return self.status == SyncState.SYNCED

    @property
    def local_id(self) -> int | None:
        return self.identity.local_id

    @property
    def remote_id(self) -> int | None:
        return self.identity.remote_id

    def with_fields(self, **changes: Any) -> "Event":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def fields(self) -> dict[str, Any]:
        """Editable fields in wire form, including the legacy ``time`` field."""
        return {
            "title": self.title,
            "description": self.description,
            "date": self.date.isoformat(),
            "start_time": format_time(self.start_time),
            "end_time": format_time(self.end_time),
            "time": format_time(self.start_time),
            "location": self.location,
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = self.fields()
        data.update({
            "id": self.identity.remote_id,
            "local_id": self.identity.local_id,
            "key": self.identity.view_key,
            "created_by": self.created_by,
            "created_by_name": self.created_by_name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "status": self.status.value,
        })
        return data

    @classmethod
    def from_remote(cls, data: dict[str, Any]) -> "Event":
        """Create from a remote store record.

        Accepts both the start/end pair and the legacy single ``time`` field.
        """
        if data.get("id") is None:
            raise ValidationError("Remote event has no id")

        if "start_time" in data:
            start = parse_time(data.get("start_time"))
            end = parse_time(data.get("end_time"))
        else:
            start = parse_time(data.get("time"))
            end = start

        known = {
            "id", "title", "description", "date", "time", "start_time",
            "end_time", "location", "created_by", "created_by_name",
            "created_at", "updated_at",
        }

        return cls(
            identity=EventIdentity.remote(int(data["id"])),
            title=data.get("title") or "",
            date=parse_date(data.get("date")),
            description=data.get("description"),
            start_time=start,
            end_time=end,
            location=data.get("location"),
            created_by=data.get("created_by"),
            created_by_name=data.get("created_by_name"),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
            status=SyncState.SYNCED,
            extra={k: v for k, v in data.items() if k not in known},
        )


def event_sort_key(event: Event | EventDraft) -> tuple[date, bool, time]:
    """Order by date, then start time, with untimed events first in a day."""
    return (
        event.date,
        event.start_time is not None,
        event.start_time or time.min,
    )
