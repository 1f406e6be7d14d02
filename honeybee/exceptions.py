"""Exceptions raised by the Honeybee calendar core."""


class HoneybeeError(Exception):
    """Base exception for calendar sync errors."""


class PersistenceError(HoneybeeError):
    """Raised when the local event store cannot be read or written."""


class NotFoundError(HoneybeeError):
    """Raised when a referenced local or remote event does not exist."""


class NetworkError(HoneybeeError):
    """Raised when a remote call could not complete."""


class Unauthorized(HoneybeeError):
    """Raised when the session credential is missing or rejected."""


class Forbidden(Unauthorized):
    """Raised when the caller may not modify the referenced event."""


class ValidationError(HoneybeeError):
    """Raised when event fields are missing or malformed."""


class ConfigurationError(HoneybeeError):
    """Raised when configuration is invalid."""
