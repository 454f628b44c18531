"""In-memory queue broker for testing — stands in for the connection manager."""

from __future__ import annotations

import asyncio
import copy
import itertools
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from ..envelope import JobState
from ..exceptions import InvalidStateError, TransportError

_EXPR = re.compile(
    r"^return queue\.tube\.(?P<tube>[A-Za-z_][A-Za-z0-9_]*)"
    r":(?P<op>put|take|ack|release)\(\.\.\.\)$"
)


@dataclass
class _Tube:
    ready: deque[int] = field(default_factory=deque)
    tasks: dict[int, list[Any]] = field(default_factory=dict)
    changed: asyncio.Condition = field(default_factory=asyncio.Condition)


class InMemoryQueueBroker:
    """Emulates the tarantool ``queue`` fifo tube behind ``call()``.

    Accepts the same ``return queue.tube.<tube>:<op>(...)`` expressions as
    ``TarantoolConnectionManager.call`` so publishers and consumers can be
    wired to it unchanged. Task data is deep-copied on put, mimicking the
    msgpack round trip.
    """

    def __init__(self, *, request_timeout: float = 5.0) -> None:
        self._tubes: dict[str, _Tube] = {}
        self._ids = itertools.count(0)
        self._failures: dict[str, list[BaseException]] = {}
        self._closed = False
        self._request_timeout = request_timeout
        self.calls: list[tuple[str, list[Any]]] = []

    @property
    def request_timeout(self) -> float:
        return self._request_timeout

    @property
    def is_connected(self) -> bool:
        return not self._closed

    def fail_next(
        self, operation: str, error: BaseException | None = None, times: int = 1
    ) -> None:
        """Make the next *times* calls of *operation* raise ``TransportError``."""
        exc = error or TransportError(f"injected {operation} failure")
        self._failures.setdefault(operation, []).extend([exc] * times)

    def _tube(self, name: str) -> _Tube:
        return self._tubes.setdefault(name, _Tube())

    async def call(
        self,
        expression: str,
        args: list[Any] | None = None,
        *,
        timeout: float | None = None,  # noqa: ARG002
    ) -> list[Any]:
        if self._closed:
            raise InvalidStateError("connection manager is closed")
        match = _EXPR.match(expression)
        if match is None:
            raise TransportError(f"unsupported expression: {expression}")
        args = list(args or [])
        self.calls.append((expression, args))
        op = match["op"]
        pending = self._failures.get(op)
        if pending:
            raise pending.pop(0)
        tube = self._tube(match["tube"])
        if op == "put":
            return await self._put(tube, args[0])
        if op == "take":
            return await self._take(tube, float(args[0]) if args else 0.0)
        if op == "ack":
            return await self._ack(tube, args[0])
        return await self._release(tube, args[0])

    async def _put(self, tube: _Tube, data: Any) -> list[Any]:
        task_id = next(self._ids)
        task = [task_id, JobState.READY.value, copy.deepcopy(data)]
        async with tube.changed:
            tube.tasks[task_id] = task
            tube.ready.append(task_id)
            tube.changed.notify()
        return [list(task)]

    async def _take(self, tube: _Tube, wait: float) -> list[Any]:
        async with tube.changed:
            if not tube.ready:
                try:
                    await asyncio.wait_for(
                        tube.changed.wait_for(lambda: bool(tube.ready)), timeout=wait
                    )
                except asyncio.TimeoutError:
                    return []
            task_id = tube.ready.popleft()
            task = tube.tasks[task_id]
            task[1] = JobState.TAKEN.value
            return [[task[0], task[1], copy.deepcopy(task[2])]]

    async def _ack(self, tube: _Tube, task_id: Any) -> list[Any]:
        async with tube.changed:
            task = self._taken(tube, task_id, "ack")
            del tube.tasks[task[0]]
            return [[task[0], JobState.DONE.value, task[2]]]

    async def _release(self, tube: _Tube, task_id: Any) -> list[Any]:
        async with tube.changed:
            task = self._taken(tube, task_id, "release")
            task[1] = JobState.READY.value
            tube.ready.appendleft(task[0])
            tube.changed.notify()
            return [list(task)]

    @staticmethod
    def _taken(tube: _Tube, task_id: Any, op: str) -> list[Any]:
        task = tube.tasks.get(task_id)
        if task is None or task[1] != JobState.TAKEN.value:
            raise TransportError(f"{op}: task {task_id!r} is not taken")
        return task

    def ready_count(self, tube: str) -> int:
        return len(self._tube(tube).ready)

    def task_count(self, tube: str) -> int:
        """Tasks not yet acked (ready or taken)."""
        return len(self._tube(tube).tasks)

    async def put_raw(self, tube: str, data: Any) -> int:
        """Enqueue arbitrary task data, bypassing the envelope shape."""
        task_id = next(self._ids)
        t = self._tube(tube)
        async with t.changed:
            t.tasks[task_id] = [task_id, JobState.READY.value, data]
            t.ready.append(task_id)
            t.changed.notify()
        return task_id

    async def health_check(self) -> bool:
        return not self._closed

    async def close(self) -> None:
        self._closed = True

    async def __aenter__(self) -> InMemoryQueueBroker:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
