"""Tarantool queue transport (``queue.tube.<tube>`` put/take/ack)."""

from __future__ import annotations

from .connection import TarantoolConnectionManager, connect, open_connection
from .consumer import TarantoolConsumer
from .publisher import TarantoolPublisher

__all__ = [
    "TarantoolConnectionManager",
    "TarantoolConsumer",
    "TarantoolPublisher",
    "connect",
    "open_connection",
]
