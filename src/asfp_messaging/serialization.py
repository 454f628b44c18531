"""Payload marshalling — JSON text in, typed models out."""

from __future__ import annotations

import dataclasses
import functools
import json
from decimal import Decimal
from typing import Any, TypeVar

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .exceptions import DecodeError, ValidationError

T = TypeVar("T")


def _json_serializer(obj: Any) -> Any:
    """Serialize datetime, Decimal and other non-JSON types."""
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json", by_alias=True)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def marshal_payload(payload: Any) -> str:
    """Encode *payload* as JSON text.

    Pydantic models are dumped by alias so the wire keeps the producer's
    field names (``customerId``, ``createdAt``).

    Raises:
        DecodeError: if the payload cannot be represented as JSON.
    """
    if isinstance(payload, BaseModel):
        return payload.model_dump_json(by_alias=True)
    if dataclasses.is_dataclass(payload) and not isinstance(payload, type):
        payload = dataclasses.asdict(payload)
    try:
        return json.dumps(payload, default=_json_serializer, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"marshal payload: {e}", raw=payload) from e


@functools.lru_cache(maxsize=64)
def _adapter(model: type[T]) -> TypeAdapter[T]:
    return TypeAdapter(model)


def decode_payload(text: str | bytes, model: type[T]) -> T:
    """Decode JSON *text* into *model*.

    Invalid JSON raises ``DecodeError``; JSON that does not satisfy the
    model raises ``ValidationError`` with per-field messages.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
        raise DecodeError(f"decode payload: {e}", raw=text) from e
    try:
        return _adapter(model).validate_python(data)
    except PydanticValidationError as e:
        raise ValidationError(errors_from_pydantic(e)) from e


def errors_from_pydantic(exc: PydanticValidationError) -> dict[str, list[str]]:
    """Flatten pydantic errors into ``{field: [messages]}``."""
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "__root__"
        errors.setdefault(loc, []).append(str(err.get("msg", "invalid value")))
    return errors
