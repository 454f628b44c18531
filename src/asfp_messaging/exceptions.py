"""Messaging-specific exceptions for asfp-messaging."""

from __future__ import annotations


class MessagingError(Exception):
    """Root exception for the queue client and its consumption loop."""


class MessagingConnectionError(MessagingError):
    """Raised when dialing the broker fails after all reconnect attempts.

    Fatal at process startup; the connection manager does not retry further.
    """


class InvalidStateError(MessagingError):
    """Raised when an operation runs against a missing or closed connection."""


class TransportError(MessagingError):
    """Raised when a put/take/ack round trip to the broker fails."""


class DecodeError(MessagingError):
    """Raised when an envelope, job tuple or payload cannot be decoded."""

    def __init__(self, message: str, raw: object | None = None) -> None:
        self.raw = raw
        super().__init__(message)


class ValidationError(MessagingError):
    """Raised when a payload is well-formed JSON but semantically invalid.

    Carries structured errors: ``{field: [messages]}``.
    """

    def __init__(self, errors: dict[str, list[str]] | str | None = None) -> None:
        if isinstance(errors, str):
            self.errors: dict[str, list[str]] = {"__root__": [errors]}
        elif errors is None:
            self.errors = {}
        else:
            self.errors = errors
        super().__init__(str(self.errors))


class PersistenceError(MessagingError):
    """Raised when the downstream store rejects a write."""


class HandlerRegistrationError(MessagingError):
    """Raised when an event type is registered twice with different handlers."""
