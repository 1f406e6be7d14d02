"""Access to the authoritative remote event store."""

from .base import RemoteEventService
from .http import HttpEventService

__all__ = ["RemoteEventService", "HttpEventService"]
