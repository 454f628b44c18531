"""Tests for DealCreatedHandler and build_registry."""

from __future__ import annotations

import logging
from typing import Any
from unittest.mock import AsyncMock
from uuid import UUID

import pytest

from asfp_messaging.events import DealCreated
from asfp_messaging.exceptions import PersistenceError
from asfp_messaging.handlers import (
    ANALYTICS_EVENT_ENTITY,
    DEAL_CREATED_AUDIT_ACTION,
    DealCreatedHandler,
    build_registry,
)
from asfp_messaging.memory import InMemoryAuditRecorder, InMemoryDealEventRepository
from asfp_messaging.ports import NIL_UUID

ACTOR = "5b7c1a6e-0000-4000-8000-000000000001"


@pytest.fixture
def event(deal_payload: dict[str, Any]) -> DealCreated:
    return DealCreated.model_validate({**deal_payload, "stage": "new"})


@pytest.mark.asyncio
async def test_handle_persists_and_audits(
    event: DealCreated,
    repository: InMemoryDealEventRepository,
    auditor: InMemoryAuditRecorder,
) -> None:
    await DealCreatedHandler(repository, auditor).handle(event)
    assert repository.events == {"d1": event}
    (entry,) = auditor.entries
    assert entry.action == DEAL_CREATED_AUDIT_ACTION == "analytics.event.deal_created"
    assert entry.entity == ANALYTICS_EVENT_ENTITY == "analytics.event"
    assert entry.entity_id == "d1"
    assert entry.actor_id == NIL_UUID
    assert entry.payload == {
        "eventId": "d1",
        "stage": "new",
        "amount": 1500.5,
        "currency": "USD",
        "customerId": "c1",
        "createdAt": "2024-05-01T10:00:00+00:00",
    }


@pytest.mark.asyncio
async def test_actor_parsed_from_created_by(
    deal_payload: dict[str, Any], auditor: InMemoryAuditRecorder
) -> None:
    event = DealCreated.model_validate({**deal_payload, "createdBy": f" {ACTOR} "})
    await DealCreatedHandler(InMemoryDealEventRepository(), auditor).handle(event)
    assert auditor.entries[0].actor_id == UUID(ACTOR)


@pytest.mark.asyncio
async def test_unparseable_actor_is_nil(
    deal_payload: dict[str, Any], auditor: InMemoryAuditRecorder
) -> None:
    event = DealCreated.model_validate({**deal_payload, "createdBy": "system"})
    await DealCreatedHandler(InMemoryDealEventRepository(), auditor).handle(event)
    assert auditor.entries[0].actor_id == NIL_UUID


@pytest.mark.asyncio
async def test_handle_without_auditor(
    event: DealCreated, repository: InMemoryDealEventRepository
) -> None:
    await DealCreatedHandler(repository).handle(event)
    assert "d1" in repository.events


@pytest.mark.asyncio
async def test_persistence_failure_wrapped(
    event: DealCreated, auditor: InMemoryAuditRecorder
) -> None:
    repository = AsyncMock()
    repository.insert_deal_created.side_effect = OSError("db down")
    with pytest.raises(PersistenceError, match="d1") as exc_info:
        await DealCreatedHandler(repository, auditor).handle(event)
    assert isinstance(exc_info.value.__cause__, OSError)
    assert auditor.entries == []


@pytest.mark.asyncio
async def test_persistence_error_passes_through(
    event: DealCreated, repository: InMemoryDealEventRepository
) -> None:
    repository.fail_with = RuntimeError("constraint")
    with pytest.raises(PersistenceError, match="constraint"):
        await DealCreatedHandler(repository).handle(event)


@pytest.mark.asyncio
async def test_audit_failure_is_logged_not_raised(
    event: DealCreated,
    repository: InMemoryDealEventRepository,
    caplog: pytest.LogCaptureFixture,
) -> None:
    auditor = AsyncMock()
    auditor.record.side_effect = RuntimeError("audit store down")
    with caplog.at_level(logging.ERROR, logger="asfp.messaging.handlers"):
        await DealCreatedHandler(repository, auditor).handle(event)
    assert "d1" in repository.events
    assert "audit analytics event d1 failed" in caplog.text


@pytest.mark.asyncio
async def test_redelivered_event_is_stored_once(
    event: DealCreated, repository: InMemoryDealEventRepository
) -> None:
    handler = DealCreatedHandler(repository)
    await handler.handle(event)
    await handler.handle(event)
    assert repository.insert_calls == 2
    assert len(repository.events) == 1


def test_build_registry(repository: InMemoryDealEventRepository) -> None:
    registry = build_registry(repository)
    route = registry.get("DealCreated")
    assert route is not None
    assert route.model is DealCreated
