"""Error types raised by the lifecycle engine."""


class EngineError(Exception):
    """Base class for engine errors."""


class StoreUnavailable(EngineError):
    """The record store could not be reached or rejected the request."""


class ValidationError(EngineError):
    """Caller supplied an invalid value."""


class AuthorizationError(EngineError):
    """Caller is not allowed to act on the record."""


class NotFound(EngineError):
    """Requested record does not exist."""
