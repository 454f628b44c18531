"""Envelope and Job — wire shapes exchanged with the queue tube."""

from __future__ import annotations

import enum
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .exceptions import DecodeError


class Envelope(BaseModel):
    """Immutable wrapper stored as the job data of one tube entry.

    ``payload`` is the JSON text of the typed event, kept opaque until the
    dispatcher picks a decoder by ``event_type``.
    """

    model_config = ConfigDict(frozen=True)

    event_type: str = Field(..., min_length=1, description="e.g. 'DealCreated'")
    payload: str = Field(..., description="JSON-encoded event body")

    @property
    def payload_bytes(self) -> bytes:
        return self.payload.encode("utf-8")

    def to_job_data(self) -> dict[str, str]:
        """Return the map passed to ``queue.tube.<tube>:put``."""
        return {"event_type": self.event_type, "payload": self.payload}

    @classmethod
    def from_job_data(cls, data: Mapping[str, Any]) -> Envelope:
        """Rebuild an envelope from the job metadata map."""
        try:
            return cls.model_validate(
                {"event_type": data.get("event_type"), "payload": data.get("payload")}
            )
        except (PydanticValidationError, AttributeError) as e:
            raise DecodeError(f"malformed envelope: {e}", raw=data) from e


class JobState(str, enum.Enum):
    """Task status codes used by the tarantool ``queue`` module."""

    READY = "r"
    TAKEN = "t"
    DONE = "-"
    BURIED = "!"
    DELAYED = "~"


class Job(BaseModel):
    """One taken task: ``[id, state, metadata]``."""

    model_config = ConfigDict(frozen=True)

    id: str
    state: JobState | str
    metadata: dict[str, Any]
    raw_id: Any = Field(default=None, exclude=True, repr=False)

    @classmethod
    def from_tuple(cls, raw: Any) -> Job:
        """Parse the task tuple returned by ``take``.

        Raises:
            DecodeError: if the shape is not ``[id, state, metadata]``.
        """
        # asynctnt tuples are indexable but not registered as Sequence
        indexable = isinstance(raw, Sequence) or (
            hasattr(raw, "__getitem__") and hasattr(raw, "__len__")
        )
        if isinstance(raw, (str, bytes, Mapping)) or not indexable or len(raw) < 3:
            raise DecodeError(f"unexpected job payload: {raw!r}", raw=raw)
        task_id, state, metadata = raw[0], raw[1], raw[2]
        if task_id is None:
            raise DecodeError(f"job without id: {raw!r}", raw=raw)
        if not isinstance(metadata, Mapping):
            raise DecodeError(
                f"job {task_id} metadata is {type(metadata).__name__}, expected map",
                raw=raw,
            )
        try:
            parsed_state: JobState | str = JobState(state)
        except ValueError:
            parsed_state = str(state)
        return cls(
            id=str(task_id),
            state=parsed_state,
            metadata=dict(metadata),
            raw_id=task_id,
        )

    def envelope(self) -> Envelope:
        return Envelope.from_job_data(self.metadata)


def job_id_of(raw: Any) -> Any:
    """Best-effort task id from a take result, so malformed jobs still get acked.

    Returns None when *raw* has no leading element to use as an id.
    """
    if isinstance(raw, (str, bytes, Mapping)):
        return None
    try:
        return raw[0]
    except (TypeError, IndexError, KeyError):
        return None
