"""Interface to the authoritative remote event store."""

from abc import ABC, abstractmethod
from typing import Any

from ..models import Event


class RemoteEventService(ABC):
    """Request/response access to the remote store.

    Implementations raise ``NetworkError`` when a call cannot complete,
    ``Unauthorized`` / ``Forbidden`` on authorization failures,
    ``NotFoundError`` for missing records and ``ValidationError`` for
    rejected fields.
    """

    @abstractmethod
    async def create(self, fields: dict[str, Any]) -> Event:
        """Create an event remotely.

        Args:
            fields: Event fields in wire form.

        Returns:
            The persisted event with its remote id and creator name.
        """
        pass

    @abstractmethod
    async def update(self, remote_id: int, fields: dict[str, Any]) -> Event:
        """Replace the fields of a remote event."""
        pass

    @abstractmethod
    async def delete(self, remote_id: int) -> None:
        """Delete a remote event. A second delete raises ``NotFoundError``."""
        pass

    @abstractmethod
    async def sync_batch(self, events: list[Event]) -> dict[int, int]:
        """Create a batch of locally pending events.

        Args:
            events: Pending local events.

        Returns:
            Mapping of local id to assigned remote id for every accepted
            event. Events the remote could not accept are omitted.
        """
        pass

    @abstractmethod
    async def list(self) -> list[Event]:
        """Events owned by the caller or the caller's partner.

        Returns:
            Synced events ordered by date then time.
        """
        pass

    async def close(self) -> None:
        """Release any held connections."""
        return None
