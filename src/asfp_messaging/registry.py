"""EventHandlerRegistry — maps event type names to decode-and-handle routes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .exceptions import HandlerRegistrationError
from .serialization import decode_payload

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .envelope import Envelope

    EventHandler = Callable[[Any], Awaitable[None]]

logger = logging.getLogger("asfp.messaging.registry")


@dataclass(frozen=True)
class EventRoute:
    """Model and handler registered for one event type."""

    event_type: str
    model: type[Any]
    handler: EventHandler

    def decode(self, envelope: Envelope) -> Any:
        """Validate the envelope payload against ``model``.

        Raises:
            DecodeError: payload is not JSON.
            ValidationError: payload does not satisfy the model.
        """
        return decode_payload(envelope.payload, self.model)


class EventHandlerRegistry:
    """Registry for ``event_type: str`` → (model, async handler).

    Populated once at startup; the dispatch loop only reads it.

    Usage::

        registry = EventHandlerRegistry()
        registry.register("DealCreated", DealCreated, handler.handle)

        @registry.route("DealClosed", DealClosed)
        async def on_closed(event: DealClosed) -> None: ...
    """

    def __init__(self) -> None:
        self._routes: dict[str, EventRoute] = {}

    def register(
        self,
        event_type: str,
        model: type[Any],
        handler: EventHandler,
    ) -> None:
        """Register *handler* for *event_type*, decoding payloads into *model*.

        Re-registering the same pair is a no-op; a different pair raises
        ``HandlerRegistrationError``.
        """
        if not event_type:
            raise HandlerRegistrationError("event_type must not be empty")
        existing = self._routes.get(event_type)
        if existing is not None:
            if existing.model is model and existing.handler == handler:
                return
            raise HandlerRegistrationError(
                f"Duplicate handler for event type {event_type!r}"
            )
        self._routes[event_type] = EventRoute(event_type, model, handler)
        logger.debug("registered handler for %s", event_type)

    def route(
        self, event_type: str, model: type[Any]
    ) -> Callable[[EventHandler], EventHandler]:
        """Decorator form of :meth:`register`."""

        def decorator(handler: EventHandler) -> EventHandler:
            self.register(event_type, model, handler)
            return handler

        return decorator

    def get(self, event_type: str) -> EventRoute | None:
        """Look up the route for *event_type*."""
        return self._routes.get(event_type)

    def has(self, event_type: str) -> bool:
        """Return ``True`` if *event_type* is registered."""
        return event_type in self._routes

    def list_registered(self) -> list[str]:
        """Return all registered event type names."""
        return list(self._routes.keys())

    def clear(self) -> None:
        """Remove all registrations (testing utility)."""
        self._routes.clear()
