"""In-memory implementations of the handler collaborators for testing."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..exceptions import PersistenceError

if TYPE_CHECKING:
    from ..events import DealCreated
    from ..ports import AuditEntry


class InMemoryDealEventRepository:
    """Keeps ``DealCreated`` events keyed by event id.

    Inserting the same id twice keeps the first row, like an
    ``ON CONFLICT DO NOTHING`` insert.
    """

    def __init__(self) -> None:
        self.events: dict[str, DealCreated] = {}
        self.insert_calls = 0
        self.fail_with: Exception | None = None

    async def insert_deal_created(self, event: DealCreated) -> None:
        self.insert_calls += 1
        if self.fail_with is not None:
            raise PersistenceError(str(self.fail_with)) from self.fail_with
        self.events.setdefault(event.id, event)

    def clear(self) -> None:
        self.events.clear()
        self.insert_calls = 0
        self.fail_with = None


class InMemoryAuditRecorder:
    """Collects audit entries in a list."""

    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    async def record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def clear(self) -> None:
        self.entries.clear()
