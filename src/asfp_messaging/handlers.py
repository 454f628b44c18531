"""Handlers that persist decoded events and record them in the audit log."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from uuid import UUID

from .events import DealCreated
from .exceptions import PersistenceError
from .ports import NIL_UUID, AuditEntry
from .registry import EventHandlerRegistry

if TYPE_CHECKING:
    from .ports import IAuditRecorder, IDealEventRepository

logger = logging.getLogger("asfp.messaging.handlers")

DEAL_CREATED_AUDIT_ACTION = "analytics.event.deal_created"
ANALYTICS_EVENT_ENTITY = "analytics.event"


class DealCreatedHandler:
    """Stores ``DealCreated`` events, then records an audit entry.

    Persistence failures are raised as ``PersistenceError`` for the dispatch
    loop to log. Audit failures are logged here and never raised.
    """

    def __init__(
        self,
        repository: IDealEventRepository,
        auditor: IAuditRecorder | None = None,
    ) -> None:
        self._repository = repository
        self._auditor = auditor

    async def handle(self, event: DealCreated) -> None:
        try:
            await self._repository.insert_deal_created(event)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"persist deal analytics {event.id}: {e}") from e
        await self._record_audit(event)

    async def _record_audit(self, event: DealCreated) -> None:
        if self._auditor is None:
            return
        entry = AuditEntry(
            action=DEAL_CREATED_AUDIT_ACTION,
            entity=ANALYTICS_EVENT_ENTITY,
            entity_id=event.id,
            actor_id=_actor_id(event.created_by),
            payload={
                "eventId": event.id,
                "stage": event.stage,
                "amount": float(event.amount),
                "currency": event.currency,
                "customerId": event.customer_id,
                "createdAt": event.created_at.isoformat(),
            },
        )
        try:
            await self._auditor.record(entry)
        except Exception:
            logger.exception("audit analytics event %s failed", event.id)


def _actor_id(created_by: str | None) -> UUID:
    if not created_by:
        return NIL_UUID
    try:
        return UUID(created_by.strip())
    except ValueError:
        return NIL_UUID


def build_registry(
    repository: IDealEventRepository,
    auditor: IAuditRecorder | None = None,
    registry: EventHandlerRegistry | None = None,
) -> EventHandlerRegistry:
    """Return a registry with every analytics event route installed."""
    registry = registry or EventHandlerRegistry()
    deal_created = DealCreatedHandler(repository, auditor)
    registry.register(DealCreated.EVENT_TYPE, DealCreated, deal_created.handle)
    return registry
