"""Custom exceptions for the people counter library."""


class PeopleCounterError(Exception):
    """Base exception for all people counter library errors."""

    pass


class SerialIOError(PeopleCounterError):
    """Raised when serial communication fails (port closed, write rejected, etc)."""

    pass


class ResponseTimeout(PeopleCounterError):
    """Raised when the device does not finish a response frame before the deadline."""

    pass


class InvalidResponse(PeopleCounterError):
    """Raised when the device sends an unexpected or malformed frame."""

    pass


class InvalidResetScope(PeopleCounterError, ValueError):
    """Raised when a reset is requested for an unknown counter scope."""

    pass
