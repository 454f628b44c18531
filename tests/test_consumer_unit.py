"""Unit tests for TarantoolConsumer with a mocked connection manager."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import MagicMock, call

import pytest

from asfp_messaging.envelope import Envelope, JobState
from asfp_messaging.events import DealCreated
from asfp_messaging.exceptions import (
    DecodeError,
    InvalidStateError,
    TransportError,
    ValidationError,
)
from asfp_messaging.ports import IJobConsumer
from asfp_messaging.tarantool.consumer import TarantoolConsumer

TAKE = "return queue.tube.events_queue:take(...)"
ACK = "return queue.tube.events_queue:ack(...)"
RELEASE = "return queue.tube.events_queue:release(...)"


def _task(task_id: Any, event_type: str, payload: str) -> list[Any]:
    return [task_id, "t", {"event_type": event_type, "payload": payload}]


@pytest.fixture
def consumer(mock_connection: MagicMock) -> TarantoolConsumer:
    return TarantoolConsumer(mock_connection, "events_queue", take_timeout=2.0)


def _take_results(mock_connection: MagicMock, *takes: list[Any]) -> None:
    """Script take results; ack/release calls return an empty body."""
    results = iter(takes)

    async def fake_call(expression: str, args: Any = None, **kwargs: Any) -> Any:
        if expression == TAKE:
            return next(results)
        return []

    mock_connection.call.side_effect = fake_call


def test_satisfies_consumer_port(consumer: TarantoolConsumer) -> None:
    assert isinstance(consumer, IJobConsumer)


def test_rejects_unsafe_tube(mock_connection: MagicMock) -> None:
    with pytest.raises(ValidationError):
        TarantoolConsumer(mock_connection, "events.queue")


@pytest.mark.asyncio
async def test_next_empty_take(
    consumer: TarantoolConsumer, mock_connection: MagicMock
) -> None:
    _take_results(mock_connection, [], [None])
    assert await consumer.next() == ("", None)
    assert await consumer.next() == ("", None)
    for recorded in mock_connection.call.await_args_list:
        assert recorded.args[0] == TAKE


@pytest.mark.asyncio
async def test_take_waits_longer_than_server_timeout(
    consumer: TarantoolConsumer, mock_connection: MagicMock
) -> None:
    _take_results(mock_connection, [])
    await consumer.next()
    mock_connection.call.assert_awaited_once_with(TAKE, [2.0], timeout=7.0)


@pytest.mark.asyncio
async def test_next_returns_envelope_and_acks(
    consumer: TarantoolConsumer, mock_connection: MagicMock
) -> None:
    _take_results(mock_connection, [_task(11, "DealCreated", '{"id": "d1"}')])
    job_id, envelope = await consumer.next()
    assert job_id == "11"
    assert envelope == Envelope(event_type="DealCreated", payload='{"id": "d1"}')
    assert mock_connection.call.await_args_list[-1] == call(ACK, [11])


@pytest.mark.asyncio
async def test_next_decodes_into_model(
    consumer: TarantoolConsumer,
    mock_connection: MagicMock,
    deal_payload: dict[str, Any],
) -> None:
    _take_results(
        mock_connection, [_task(5, "DealCreated", json.dumps(deal_payload))]
    )
    job_id, event = await consumer.next(DealCreated)
    assert job_id == "5"
    assert isinstance(event, DealCreated)
    assert event.customer_id == "c1"


@pytest.mark.asyncio
async def test_next_acks_even_when_payload_is_not_json(
    consumer: TarantoolConsumer, mock_connection: MagicMock
) -> None:
    _take_results(mock_connection, [_task(3, "DealCreated", "{not json")])
    with pytest.raises(DecodeError):
        await consumer.next(DealCreated)
    assert mock_connection.call.await_args_list[-1] == call(ACK, [3])


@pytest.mark.asyncio
async def test_next_acks_even_when_payload_is_invalid(
    consumer: TarantoolConsumer,
    mock_connection: MagicMock,
    deal_payload: dict[str, Any],
) -> None:
    deal_payload["createdAt"] = "yesterday"
    _take_results(
        mock_connection, [_task(4, "DealCreated", json.dumps(deal_payload))]
    )
    with pytest.raises(DecodeError, match="DealCreated") as exc_info:
        await consumer.next(DealCreated)
    assert exc_info.value.raw == json.dumps(deal_payload)
    cause = exc_info.value.__cause__
    assert isinstance(cause, ValidationError)
    assert "createdAt" in cause.errors
    assert mock_connection.call.await_args_list[-1] == call(ACK, [4])


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", ["[1, 2]", "42", '{"id": "d1"}'])
async def test_next_reports_schema_mismatch_as_decode_error(
    consumer: TarantoolConsumer, mock_connection: MagicMock, payload: str
) -> None:
    _take_results(mock_connection, [_task(5, "DealCreated", payload)])
    with pytest.raises(DecodeError):
        await consumer.next(DealCreated)
    assert mock_connection.call.await_args_list[-1] == call(ACK, [5])


@pytest.mark.asyncio
async def test_next_malformed_tuple_with_id_is_acked(
    consumer: TarantoolConsumer, mock_connection: MagicMock
) -> None:
    _take_results(mock_connection, [[9, "t", "not a map"]])
    with pytest.raises(DecodeError):
        await consumer.next()
    assert mock_connection.call.await_args_list[-1] == call(ACK, [9])


@pytest.mark.asyncio
async def test_next_malformed_result_without_id(
    consumer: TarantoolConsumer, mock_connection: MagicMock
) -> None:
    _take_results(mock_connection, ["just-a-string"])
    with pytest.raises(DecodeError):
        await consumer.next()
    assert mock_connection.call.await_count == 1


@pytest.mark.asyncio
async def test_ack_failure_takes_precedence(
    consumer: TarantoolConsumer, mock_connection: MagicMock
) -> None:
    async def fake_call(expression: str, args: Any = None, **kwargs: Any) -> Any:
        if expression == TAKE:
            return [_task(8, "DealCreated", "{not json")]
        raise TransportError("ack timed out")

    mock_connection.call.side_effect = fake_call
    with pytest.raises(TransportError, match="ack job 8") as exc_info:
        await consumer.next()
    assert isinstance(exc_info.value.__cause__, TransportError)


@pytest.mark.asyncio
async def test_take_failure_is_transport_error(
    consumer: TarantoolConsumer, mock_connection: MagicMock
) -> None:
    mock_connection.call.side_effect = TransportError("take failed")
    with pytest.raises(TransportError):
        await consumer.next()


@pytest.mark.asyncio
async def test_next_without_connection() -> None:
    consumer = TarantoolConsumer(None, "events_queue")
    with pytest.raises(InvalidStateError, match="nil"):
        await consumer.next()


@pytest.mark.asyncio
async def test_take_does_not_ack(
    consumer: TarantoolConsumer, mock_connection: MagicMock
) -> None:
    _take_results(mock_connection, [_task(12, "X", "{}")], [])
    job = await consumer.take()
    assert job is not None
    assert job.raw_id == 12
    assert job.state is JobState.TAKEN
    assert await consumer.take() is None
    assert [c.args[0] for c in mock_connection.call.await_args_list] == [TAKE, TAKE]


@pytest.mark.asyncio
async def test_ack_and_release(
    consumer: TarantoolConsumer, mock_connection: MagicMock
) -> None:
    await consumer.ack(1)
    await consumer.release(2)
    assert mock_connection.call.await_args_list == [
        call(ACK, [1]),
        call(RELEASE, [2]),
    ]


@pytest.mark.asyncio
async def test_close(mock_connection: MagicMock) -> None:
    owned = TarantoolConsumer(mock_connection, "events_queue", owns_connection=True)
    await owned.close()
    await owned.close()
    mock_connection.close.assert_awaited_once()
    assert await owned.health_check() is False
