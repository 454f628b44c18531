"""Typed domain events carried inside envelopes."""

from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

_RFC3339 = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2})[Tt ](?P<time>\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?(?P<offset>[Zz]|[+-]\d{2}:\d{2})$"
)


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC 3339 timestamp; an explicit offset is mandatory."""
    match = _RFC3339.match(value) if isinstance(value, str) else None
    if match is None:
        raise ValueError(f"not an RFC 3339 timestamp: {value!r}")
    # fromisoformat before 3.11 only takes 3 or 6 fraction digits
    fraction = (match["fraction"] or "")[:6].ljust(6, "0")
    offset = match["offset"]
    if offset in ("Z", "z"):
        offset = "+00:00"
    stamp = f"{match['base']}T{match['time']}.{fraction}{offset}"
    return datetime.fromisoformat(stamp)


class DealCreated(BaseModel):
    """CRM ``DealCreated`` event as published by the deal service.

    ``currency`` arrives already normalized by the producer; it is not
    rewritten here.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    EVENT_TYPE: ClassVar[str] = "DealCreated"

    id: str = Field(..., min_length=1)
    amount: Decimal
    currency: str
    customer_id: str = Field(..., alias="customerId")
    created_at: datetime = Field(..., alias="createdAt")
    stage: str | None = None
    created_by: str | None = Field(default=None, alias="createdBy")

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_created_at(cls, value: object) -> object:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                raise ValueError("createdAt must carry a UTC offset")
            return value
        if not isinstance(value, str):
            raise ValueError(f"createdAt must be a string, got {type(value).__name__}")
        return parse_rfc3339(value)

    @field_serializer("amount", when_used="json")
    def _amount_as_number(self, value: Decimal) -> float:
        # consumers on the wire expect a JSON number, not a string
        return float(value)

    @field_serializer("created_at", when_used="json")
    def _created_at_rfc3339(self, value: datetime) -> str:
        return value.isoformat().replace("+00:00", "Z")
