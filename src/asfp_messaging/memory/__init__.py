"""In-memory queue and persistence adapters for testing."""

from __future__ import annotations

from .broker import InMemoryQueueBroker
from .repository import InMemoryAuditRecorder, InMemoryDealEventRepository

__all__ = [
    "InMemoryAuditRecorder",
    "InMemoryDealEventRepository",
    "InMemoryQueueBroker",
]
