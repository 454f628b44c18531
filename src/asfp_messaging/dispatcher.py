"""EventDispatcher — cancellable polling loop from the queue tube to handlers."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .envelope import Envelope, job_id_of
from .exceptions import DecodeError, TransportError, ValidationError
from .ports import IBackgroundWorker

if TYPE_CHECKING:
    from .ports import IJobConsumer
    from .registry import EventHandlerRegistry

logger = logging.getLogger("asfp.messaging.dispatcher")

DEFAULT_ERROR_BACKOFF = 1.0
DEFAULT_IDLE_BACKOFF = 0.25


class LoopState(str, enum.Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    STOPPED = "stopped"


class AckMode(str, enum.Enum):
    """When a taken job is acknowledged.

    ``ON_TAKE``: the consumer acks before decoding (at-most-once); a crash
    or persistence failure afterwards loses the message.
    ``AFTER_HANDLE``: ack after the handler succeeds or the message is
    discarded as undecodable; release on handler failure so the broker
    redelivers it (at-least-once; handlers must be idempotent).
    """

    ON_TAKE = "on_take"
    AFTER_HANDLE = "after_handle"


class Outcome(str, enum.Enum):
    """Result of one loop iteration."""

    HANDLED = "handled"
    EMPTY = "empty"
    DISCARDED = "discarded"
    FAILED = "failed"
    TRANSPORT_ERROR = "transport_error"


@dataclass
class DispatchStats:
    processed: int = 0
    discarded: int = 0
    failed: int = 0
    idle_polls: int = 0
    transport_errors: int = 0


class EventDispatcher(IBackgroundWorker):
    """Single-task loop that takes jobs, routes them by event type and
    hands decoded events to their registered handlers.

    Every error raised inside an iteration is caught and logged at the loop
    boundary; the loop only ends when stopped or cancelled. Stop requests
    are checked once per iteration, so an in-flight take is never
    interrupted: expect up to one take timeout plus backoff before the
    loop reaches ``STOPPED``.

    Usage::

        dispatcher = EventDispatcher(consumer, build_registry(repo))
        await dispatcher.start()
        ...
        await dispatcher.stop()
    """

    def __init__(
        self,
        consumer: IJobConsumer,
        registry: EventHandlerRegistry,
        *,
        error_backoff: float = DEFAULT_ERROR_BACKOFF,
        idle_backoff: float = DEFAULT_IDLE_BACKOFF,
        ack_mode: AckMode = AckMode.ON_TAKE,
        shutdown_timeout: float | None = None,
    ) -> None:
        """Configure the loop.

        Args:
            consumer: Job source; owns the broker connection.
            registry: Event type → model/handler routes.
            error_backoff: Wait after a failed take/ack round trip.
            idle_backoff: Wait after a take that returned no job.
            ack_mode: See :class:`AckMode`.
            shutdown_timeout: If set, ``stop()`` cancels the loop task when
                it has not finished within this many seconds.
        """
        self._consumer = consumer
        self._registry = registry
        self._error_backoff = error_backoff
        self._idle_backoff = idle_backoff
        self._ack_mode = ack_mode
        self._shutdown_timeout = shutdown_timeout
        self._state = LoopState.STOPPED
        self._stats = DispatchStats()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def stats(self) -> DispatchStats:
        return self._stats

    @property
    def ack_mode(self) -> AckMode:
        return self._ack_mode

    # ── Worker lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """Run the loop in a background task."""
        if self._task is not None and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        """Request a stop and wait for the loop to reach ``STOPPED``."""
        self._stop_event.set()
        task, self._task = self._task, None
        if task is None:
            return
        try:
            await asyncio.wait_for(
                asyncio.shield(task), timeout=self._shutdown_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("dispatcher did not stop in time; cancelling")
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Poll until *stop_event* (or ``stop()``) is set."""
        stop = stop_event or self._stop_event
        self._state = LoopState.IDLE
        logger.info(
            "event dispatcher started (ack_mode=%s, events=%s)",
            self._ack_mode.value,
            self._registry.list_registered(),
        )
        try:
            while not stop.is_set():
                outcome = await self.run_once()
                if outcome is Outcome.TRANSPORT_ERROR:
                    await self._pause(self._error_backoff, stop)
                elif outcome is Outcome.EMPTY:
                    await self._pause(self._idle_backoff, stop)
        finally:
            self._state = LoopState.STOPPED
            logger.info("event dispatcher stopped")

    async def _pause(self, seconds: float, stop: asyncio.Event) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=seconds)

    # ── One iteration ────────────────────────────────────────────────

    async def run_once(self) -> Outcome:
        """Take and process at most one job (useful in tests)."""
        previous = self._state
        try:
            if self._ack_mode is AckMode.ON_TAKE:
                return await self._ack_on_take()
            return await self._ack_after_handle()
        except TransportError as e:
            self._stats.transport_errors += 1
            logger.error("fetch event: %s", e)
            return Outcome.TRANSPORT_ERROR
        except Exception:
            self._stats.transport_errors += 1
            logger.exception("unexpected error in event dispatcher")
            return Outcome.TRANSPORT_ERROR
        finally:
            if self._state is LoopState.PROCESSING:
                self._state = previous

    async def _ack_on_take(self) -> Outcome:
        try:
            job_id, envelope = await self._consumer.next(Envelope)
        except DecodeError as e:
            self._stats.discarded += 1
            logger.error("decode envelope: %s; raw=%r", e, e.raw)
            return Outcome.DISCARDED
        if envelope is None:
            self._stats.idle_polls += 1
            return Outcome.EMPTY
        return await self._process(job_id, envelope)

    async def _ack_after_handle(self) -> Outcome:
        try:
            job = await self._consumer.take()
        except DecodeError as e:
            self._stats.discarded += 1
            logger.error("decode job: %s; raw=%r", e, e.raw)
            raw_id = job_id_of(e.raw)
            # without an id the job stays taken until the broker's ttr expires
            if raw_id is not None:
                await self._consumer.ack(raw_id)
            return Outcome.DISCARDED
        if job is None:
            self._stats.idle_polls += 1
            return Outcome.EMPTY
        try:
            envelope = job.envelope()
        except DecodeError as e:
            self._stats.discarded += 1
            logger.error("decode envelope of job %s: %s; raw=%r", job.id, e, e.raw)
            outcome = Outcome.DISCARDED
        else:
            outcome = await self._process(job.id, envelope)
        if outcome is Outcome.FAILED:
            await self._consumer.release(job.raw_id)
        else:
            await self._consumer.ack(job.raw_id)
        return outcome

    async def _process(self, job_id: str, envelope: Envelope) -> Outcome:
        self._state = LoopState.PROCESSING
        event_type = envelope.event_type
        context = {"event_type": event_type, "job_id": job_id}
        route = self._registry.get(event_type)
        if route is None:
            self._stats.discarded += 1
            logger.warning(
                "skip unknown event %s (job %s)", event_type, job_id, extra=context
            )
            return Outcome.DISCARDED
        try:
            event: Any = route.decode(envelope)
        except DecodeError as e:
            self._stats.discarded += 1
            logger.error(
                "decode %s event (job %s): %s; payload=%s",
                event_type,
                job_id,
                e,
                envelope.payload,
                extra={**context, "payload": envelope.payload},
            )
            return Outcome.DISCARDED
        except ValidationError as e:
            self._stats.discarded += 1
            logger.error(
                "invalid %s event (job %s): %s; payload=%s",
                event_type,
                job_id,
                e.errors,
                envelope.payload,
                extra={**context, "payload": envelope.payload},
            )
            return Outcome.DISCARDED
        try:
            await route.handler(event)
        except Exception as e:
            self._stats.failed += 1
            logger.error(
                "handle %s event (job %s): %s; payload=%s",
                event_type,
                job_id,
                e,
                envelope.payload,
                extra={**context, "payload": envelope.payload},
            )
            return Outcome.FAILED
        self._stats.processed += 1
        logger.debug("handled %s event (job %s)", event_type, job_id, extra=context)
        return Outcome.HANDLED
