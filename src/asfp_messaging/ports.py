"""Ports — protocols for the queue adapters and the collaborators they drive."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from uuid import UUID

if TYPE_CHECKING:
    from .envelope import Job
    from .events import DealCreated

NIL_UUID = UUID(int=0)


@runtime_checkable
class IQueueConnection(Protocol):
    """
    Port for the broker session shared by publishers and consumers.

    Implementations: ``TarantoolConnectionManager``, ``InMemoryQueueBroker``.
    """

    @property
    def request_timeout(self) -> float: ...

    async def call(
        self,
        expression: str,
        args: list[Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> list[Any]: ...

    async def health_check(self) -> bool: ...

    async def close(self) -> None: ...


@runtime_checkable
class IEventPublisher(Protocol):
    """
    Port for putting typed events onto a queue tube.

    Infrastructure packages provide concrete adapters.
    """

    async def publish(self, event_type: str, payload: Any) -> None:
        """
        Publish *payload* under *event_type*.

        Args:
            event_type: Routing tag, e.g. ``"DealCreated"``.
            payload: Pydantic model, dict, or any JSON-serializable value.
        """
        ...


@runtime_checkable
class IJobConsumer(Protocol):
    """
    Port for taking jobs off a queue tube.

    ``next`` acknowledges on take; ``take``/``ack``/``release`` let callers
    acknowledge after processing instead.
    """

    async def next(self, model: type[Any] = ...) -> tuple[str, Any]: ...

    async def take(self) -> Job | None: ...

    async def ack(self, job_id: Any) -> None: ...

    async def release(self, job_id: Any) -> None: ...


@runtime_checkable
class IDealEventRepository(Protocol):
    """Persistence collaborator for ``DealCreated`` analytics events.

    Writes should be keyed by event id so a redelivered job does not
    produce a second row.
    """

    async def insert_deal_created(self, event: DealCreated) -> None: ...


@dataclass
class AuditEntry:
    """One row for the audit log."""

    action: str
    entity: str
    entity_id: str = ""
    actor_id: UUID = NIL_UUID
    payload: dict[str, object] = field(default_factory=dict)


@runtime_checkable
class IAuditRecorder(Protocol):
    """Protocol for the audit log writer."""

    async def record(self, entry: AuditEntry) -> None: ...


@runtime_checkable
class IBackgroundWorker(Protocol):
    """
    General lifecycle protocol for background workers.

    Used by: ``EventDispatcher``.
    """

    async def start(self) -> None:
        """Start the background process."""
        ...

    async def stop(self) -> None:
        """Stop the background process gracefully."""
        ...
