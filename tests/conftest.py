"""Pytest fixtures for asfp-messaging tests."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from asfp_messaging.memory import (
    InMemoryAuditRecorder,
    InMemoryDealEventRepository,
    InMemoryQueueBroker,
)


@pytest.fixture
def deal_payload() -> dict[str, Any]:
    return {
        "id": "d1",
        "amount": 1500.5,
        "currency": "USD",
        "customerId": "c1",
        "createdAt": "2024-05-01T10:00:00Z",
    }


def make_client(*, connect_error: BaseException | None = None) -> MagicMock:
    """A stand-in for ``asynctnt.Connection``."""
    client = MagicMock()
    client.is_connected = connect_error is None
    client.connect = AsyncMock(side_effect=connect_error)
    client.disconnect = AsyncMock()
    client.ping = AsyncMock()
    client.eval = AsyncMock(return_value=MagicMock(body=[]))
    return client


@pytest.fixture
def client() -> MagicMock:
    return make_client()


@pytest.fixture
def client_factory(client: MagicMock) -> MagicMock:
    return MagicMock(return_value=client)


@pytest.fixture
def mock_connection() -> MagicMock:
    """Connection manager double for publisher/consumer unit tests."""
    conn = MagicMock()
    conn.request_timeout = 5.0
    conn.call = AsyncMock(return_value=[])
    conn.close = AsyncMock()
    conn.health_check = AsyncMock(return_value=True)
    return conn


@pytest.fixture
def broker() -> InMemoryQueueBroker:
    return InMemoryQueueBroker()


@pytest.fixture
def repository() -> InMemoryDealEventRepository:
    return InMemoryDealEventRepository()


@pytest.fixture
def auditor() -> InMemoryAuditRecorder:
    return InMemoryAuditRecorder()


@pytest.fixture
def client_builder() -> Any:
    return make_client
