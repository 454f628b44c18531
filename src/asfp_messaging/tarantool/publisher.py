"""TarantoolPublisher — IEventPublisher over ``queue.tube.<tube>:put``."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from ..envelope import Envelope
from ..exceptions import InvalidStateError, ValidationError
from ..serialization import errors_from_pydantic, marshal_payload
from ..settings import validate_tube_name

if TYPE_CHECKING:
    from ..ports import IQueueConnection

logger = logging.getLogger("asfp.messaging.tarantool.publisher")


class TarantoolPublisher:
    """Encodes events into envelopes and enqueues them on one tube.

    No local buffering or retry: a transport failure is surfaced to the
    caller, who decides whether to publish again. Safe for concurrent use
    from many request handlers sharing one connection.
    """

    def __init__(
        self,
        connection: IQueueConnection | None,
        tube: str,
        *,
        owns_connection: bool = False,
    ) -> None:
        """Configure publisher.

        Args:
            connection: Connection manager, usually owned by the caller.
            tube: Queue tube name; must be a plain identifier.
            owns_connection: Close the connection in close() when True.
        """
        self._connection = connection
        self._owns_connection = owns_connection
        self._tube = validate_tube_name(tube)
        self._put_expr = f"return queue.tube.{self._tube}:put(...)"

    @property
    def tube(self) -> str:
        return self._tube

    async def publish(self, event_type: str, payload: Any) -> None:
        """Marshal *payload* to JSON and put it on the tube as *event_type*.

        Raises:
            InvalidStateError: when there is no connection.
            ValidationError: when *event_type* is empty.
            DecodeError: when *payload* cannot be marshalled to JSON.
            TransportError: when the put round trip fails.
        """
        if self._connection is None:
            raise InvalidStateError("publisher connection is nil")
        body = marshal_payload(payload)
        try:
            envelope = Envelope(event_type=event_type, payload=body)
        except PydanticValidationError as e:
            raise ValidationError(errors_from_pydantic(e)) from e
        await self._connection.call(self._put_expr, [envelope.to_job_data()])
        logger.debug("published %s to tube %s", event_type, self._tube)

    async def close(self) -> None:
        """Detach from the connection, closing it if owned. Idempotent."""
        connection, self._connection = self._connection, None
        if connection is not None and self._owns_connection:
            await connection.close()

    async def health_check(self) -> bool:
        """Return True if the connection is healthy."""
        if self._connection is None:
            return False
        return await self._connection.health_check()
