"""TarantoolConsumer — take/ack cycle over ``queue.tube.<tube>``."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..envelope import Envelope, Job, job_id_of
from ..exceptions import (
    DecodeError,
    InvalidStateError,
    TransportError,
    ValidationError,
)
from ..serialization import decode_payload
from ..settings import validate_tube_name

if TYPE_CHECKING:
    from ..ports import IQueueConnection

logger = logging.getLogger("asfp.messaging.tarantool.consumer")

DEFAULT_TAKE_TIMEOUT = 2.0


class TarantoolConsumer:
    """Pulls jobs off one tube and decodes their envelopes.

    ``next()`` acknowledges every job it takes before returning, whether or
    not the payload decoded: delivery is at-most-once once a job is taken.
    ``take()``, ``ack()`` and ``release()`` are exposed for callers that
    defer acknowledgement until after processing.
    """

    def __init__(
        self,
        connection: IQueueConnection | None,
        tube: str,
        *,
        take_timeout: float = DEFAULT_TAKE_TIMEOUT,
        owns_connection: bool = False,
    ) -> None:
        """Configure consumer.

        Args:
            connection: Connection manager, usually owned by the caller.
            tube: Queue tube name; must be a plain identifier.
            take_timeout: Long-poll wait in seconds for each take.
            owns_connection: Close the connection in close() when True.
        """
        self._connection = connection
        self._owns_connection = owns_connection
        self._tube = validate_tube_name(tube)
        self._take_timeout = take_timeout
        self._take_expr = f"return queue.tube.{self._tube}:take(...)"
        self._ack_expr = f"return queue.tube.{self._tube}:ack(...)"
        self._release_expr = f"return queue.tube.{self._tube}:release(...)"

    @property
    def tube(self) -> str:
        return self._tube

    @property
    def take_timeout(self) -> float:
        return self._take_timeout

    def _require_connection(self) -> IQueueConnection:
        if self._connection is None:
            raise InvalidStateError("consumer connection is nil")
        return self._connection

    async def _take_raw(self) -> Any:
        connection = self._require_connection()
        # the request must outlive the server-side wait
        result = await connection.call(
            self._take_expr,
            [self._take_timeout],
            timeout=self._take_timeout + connection.request_timeout,
        )
        if not result or result[0] is None:
            return None
        return result[0]

    async def take(self) -> Job | None:
        """Take the next ready job, blocking up to ``take_timeout``.

        Returns ``None`` when nothing became ready in time. The job stays
        taken until ``ack()`` or ``release()``.

        Raises:
            InvalidStateError: when there is no connection.
            TransportError: when the take round trip fails.
            DecodeError: when the result is not ``[id, state, metadata]``.
        """
        raw = await self._take_raw()
        return None if raw is None else Job.from_tuple(raw)

    async def ack(self, job_id: Any) -> None:
        """Mark a taken job as done, removing it from the tube."""
        await self._require_connection().call(self._ack_expr, [job_id])

    async def release(self, job_id: Any) -> None:
        """Return a taken job to the ready state for redelivery."""
        await self._require_connection().call(self._release_expr, [job_id])

    async def next(self, model: type[Any] = Envelope) -> tuple[str, Any]:
        """Take one job, acknowledge it, and decode it into *model*.

        With the default ``model`` the envelope itself is returned; any
        other type is validated against the JSON held in the envelope's
        ``payload``.

        Returns:
            ``(job_id, value)``, or ``("", None)`` when no job was ready.

        Raises:
            InvalidStateError: when there is no connection.
            TransportError: when take or ack fails; an unacknowledged job
                becomes visible again once the broker's own timeout elapses.
            DecodeError: malformed job tuple, or a payload that is not valid
                JSON or does not satisfy *model* (job already acked). Schema
                errors are chained as ``__cause__`` (a ValidationError).
        """
        raw = await self._take_raw()
        if raw is None:
            return "", None
        job_id = job_id_of(raw)
        value: Any = None
        decode_error: DecodeError | None = None
        try:
            envelope = Job.from_tuple(raw).envelope()
            if model is Envelope:
                value = envelope
            else:
                value = self._decode(envelope, model)
        except DecodeError as e:
            decode_error = e
        if job_id is not None:
            try:
                await self.ack(job_id)
            except TransportError as e:
                raise TransportError(f"ack job {job_id}: {e}") from e
        if decode_error is not None:
            logger.debug(
                "job %s on tube %s acked with undecodable payload: %s",
                job_id,
                self._tube,
                decode_error,
            )
            raise decode_error
        return str(job_id), value

    @staticmethod
    def _decode(envelope: Envelope, model: type[Any]) -> Any:
        try:
            return decode_payload(envelope.payload, model)
        except ValidationError as e:
            raise DecodeError(
                f"{envelope.event_type} payload does not match "
                f"{getattr(model, '__name__', model)}: {e.errors}",
                raw=envelope.payload,
            ) from e

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
