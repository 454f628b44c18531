"""Tarantool job-queue client and event dispatch loop for asfp services."""

from __future__ import annotations

from .dispatcher import AckMode, DispatchStats, EventDispatcher, LoopState, Outcome
from .envelope import Envelope, Job, JobState
from .events import DealCreated
from .exceptions import (
    DecodeError,
    HandlerRegistrationError,
    InvalidStateError,
    MessagingConnectionError,
    MessagingError,
    PersistenceError,
    TransportError,
    ValidationError,
)
from .handlers import DealCreatedHandler, build_registry
from .memory import (
    InMemoryAuditRecorder,
    InMemoryDealEventRepository,
    InMemoryQueueBroker,
)
from .ports import (
    AuditEntry,
    IAuditRecorder,
    IBackgroundWorker,
    IDealEventRepository,
    IEventPublisher,
    IJobConsumer,
)
from .registry import EventHandlerRegistry, EventRoute
from .serialization import decode_payload, marshal_payload
from .settings import TarantoolSettings
from .tarantool import (
    TarantoolConnectionManager,
    TarantoolConsumer,
    TarantoolPublisher,
    connect,
    open_connection,
)

__all__ = [
    "AckMode",
    "AuditEntry",
    "DealCreated",
    "DealCreatedHandler",
    "DecodeError",
    "DispatchStats",
    "Envelope",
    "EventDispatcher",
    "EventHandlerRegistry",
    "EventRoute",
    "HandlerRegistrationError",
    "IAuditRecorder",
    "IBackgroundWorker",
    "IDealEventRepository",
    "IEventPublisher",
    "IJobConsumer",
    "InMemoryAuditRecorder",
    "InMemoryDealEventRepository",
    "InMemoryQueueBroker",
    "InvalidStateError",
    "Job",
    "JobState",
    "LoopState",
    "MessagingConnectionError",
    "MessagingError",
    "Outcome",
    "PersistenceError",
    "TarantoolConnectionManager",
    "TarantoolConsumer",
    "TarantoolPublisher",
    "TarantoolSettings",
    "TransportError",
    "ValidationError",
    "build_registry",
    "connect",
    "decode_payload",
    "marshal_payload",
    "open_connection",
]
