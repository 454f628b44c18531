"""Tarantool connection lifecycle: dial timeout, bounded reconnect, health check."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import asynctnt
from asynctnt.exceptions import TarantoolError

from ..exceptions import InvalidStateError, MessagingConnectionError, TransportError
from ..settings import DEFAULT_ADDRESS, parse_address

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from ..settings import TarantoolSettings

logger = logging.getLogger("asfp.messaging.tarantool.connection")

DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_REQUEST_TIMEOUT = 5.0
DEFAULT_RECONNECT_DELAY = 2.0
DEFAULT_MAX_RECONNECTS = 5

_DIAL_ERRORS = (OSError, asyncio.TimeoutError, TarantoolError)


class TarantoolConnectionManager:
    """Owns one logical IProto session to a Tarantool instance.

    asynctnt multiplexes requests by sync id, so a single manager can be
    shared by concurrent publishers without interleaving request framing.
    Schema fetching is disabled; the queue only issues ``eval`` requests.

    Use as an async context manager for guaranteed release::

        async with TarantoolConnectionManager("tarantool:3301") as conn:
            publisher = TarantoolPublisher(conn, tube="events_queue")
    """

    def __init__(
        self,
        address: str = DEFAULT_ADDRESS,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        max_reconnects: int = DEFAULT_MAX_RECONNECTS,
        username: str | None = None,
        password: str | None = None,
        client_factory: Callable[..., Any] | None = None,
    ) -> None:
        """Configure the connection.

        Args:
            address: ``host:port`` of the Tarantool instance.
            connect_timeout: Per-dial timeout in seconds.
            request_timeout: Default per-request timeout in seconds.
            reconnect_delay: Sleep between dial attempts.
            max_reconnects: Extra dial attempts after the first failure.
            username: Optional IProto user.
            password: Optional IProto password.
            client_factory: Builds the client; defaults to ``asynctnt.Connection``.
        """
        self._address = address
        self._host, self._port = parse_address(address)
        self._connect_timeout = connect_timeout
        self._request_timeout = request_timeout
        self._reconnect_delay = reconnect_delay
        self._max_reconnects = max_reconnects
        self._username = username
        self._password = password
        self._client_factory = client_factory or asynctnt.Connection
        self._client: Any = None
        self._dial_lock = asyncio.Lock()
        self._closed = False
        self._opened = False

    @classmethod
    def from_settings(
        cls, settings: TarantoolSettings, **kwargs: Any
    ) -> TarantoolConnectionManager:
        """Build a manager from validated settings."""
        return cls(
            settings.address,
            connect_timeout=settings.connect_timeout,
            request_timeout=settings.request_timeout,
            reconnect_delay=settings.reconnect_delay,
            max_reconnects=settings.max_reconnects,
            **kwargs,
        )

    @property
    def address(self) -> str:
        return self._address

    @property
    def request_timeout(self) -> float:
        return self._request_timeout

    @property
    def is_connected(self) -> bool:
        return (
            not self._closed
            and self._client is not None
            and bool(self._client.is_connected)
        )

    async def connect(self) -> None:
        """Dial the broker. Idempotent if already connected.

        Raises:
            MessagingConnectionError: when every dial attempt failed.
            InvalidStateError: when the manager was already closed.
        """
        if self._closed:
            raise InvalidStateError("connection manager is closed")
        async with self._dial_lock:
            if self.is_connected:
                return
            await self._dial()

    async def _dial(self) -> None:
        await self._discard_client()
        attempts = self._max_reconnects + 1
        last_error: BaseException | None = None
        for attempt in range(1, attempts + 1):
            client = self._client_factory(
                host=self._host,
                port=self._port,
                username=self._username,
                password=self._password,
                fetch_schema=False,
                auto_refetch_schema=False,
                connect_timeout=self._connect_timeout,
                request_timeout=self._request_timeout,
                reconnect_timeout=0,
            )
            try:
                await client.connect()
            except _DIAL_ERRORS as e:
                last_error = e
                logger.warning(
                    "tarantool dial %s failed (attempt %d/%d): %s",
                    self._address,
                    attempt,
                    attempts,
                    e,
                )
                await self._disconnect(client)
                if attempt < attempts:
                    await asyncio.sleep(self._reconnect_delay)
                continue
            self._client = client
            self._opened = True
            logger.info("tarantool connected to %s", self._address)
            return
        raise MessagingConnectionError(
            f"connect tarantool {self._address}: {last_error}"
        ) from last_error

    async def _ensure_client(self) -> Any:
        if self._closed:
            raise InvalidStateError("connection manager is closed")
        if not self._opened:
            raise InvalidStateError("Not connected; call connect() first")
        if not self.is_connected:
            try:
                await self.connect()
            except MessagingConnectionError as e:
                raise TransportError(f"reconnect tarantool: {e}") from e
        return self._client

    async def call(
        self,
        expression: str,
        args: list[Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> list[Any]:
        """Evaluate a Lua *expression* remotely and return its result values.

        Raises:
            InvalidStateError: when not connected.
            TransportError: when the round trip fails.
        """
        client = await self._ensure_client()
        try:
            response = await client.eval(
                expression,
                args or [],
                timeout=timeout if timeout is not None else self._request_timeout,
            )
        except (TarantoolError, OSError, asyncio.TimeoutError) as e:
            raise TransportError(f"{expression}: {e}") from e
        body = response.body
        return list(body) if body is not None else []

    async def close(self) -> None:
        """Close the session. Safe to call repeatedly or before connect()."""
        self._closed = True
        await self._discard_client()

    async def _discard_client(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await self._disconnect(client)
            logger.info("tarantool connection to %s closed", self._address)

    async def _disconnect(self, client: Any) -> None:
        try:
            await client.disconnect()
        except (TarantoolError, OSError) as e:
            logger.warning("tarantool disconnect %s: %s", self._address, e)

    async def health_check(self) -> bool:
        """Return True if a ping round trip succeeds."""
        if not self.is_connected:
            return False
        try:
            await self._client.ping(timeout=self._request_timeout)
            return True
        except Exception:  # noqa: BLE001
            return False

    async def __aenter__(self) -> TarantoolConnectionManager:
        try:
            await self.connect()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


async def connect(
    address: str = DEFAULT_ADDRESS, **options: Any
) -> TarantoolConnectionManager:
    """Return a connected manager for *address*.

    The half-built manager is closed before ``MessagingConnectionError``
    propagates, so no socket outlives a failed startup.
    """
    return await _connected(TarantoolConnectionManager(address, **options))


async def open_connection(
    settings: TarantoolSettings, **options: Any
) -> TarantoolConnectionManager:
    """Like connect(), configured from validated settings."""
    manager = TarantoolConnectionManager.from_settings(settings, **options)
    return await _connected(manager)


async def _connected(
    manager: TarantoolConnectionManager,
) -> TarantoolConnectionManager:
    try:
        await manager.connect()
    except BaseException:
        await manager.close()
        raise
    return manager
