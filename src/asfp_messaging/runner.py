"""Consumer process: connect, register analytics handlers, dispatch until signalled."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from typing import TYPE_CHECKING

from .dispatcher import AckMode, EventDispatcher
from .exceptions import MessagingConnectionError, ValidationError
from .handlers import build_registry
from .memory import InMemoryAuditRecorder, InMemoryDealEventRepository
from .settings import TarantoolSettings
from .tarantool import TarantoolConsumer, open_connection

if TYPE_CHECKING:
    from .ports import IAuditRecorder, IDealEventRepository

logger = logging.getLogger("asfp.messaging.runner")

DEFAULT_ENV_PREFIX = "ANALYTICS"


async def serve(
    settings: TarantoolSettings,
    repository: IDealEventRepository,
    auditor: IAuditRecorder | None = None,
    *,
    ack_mode: AckMode = AckMode.ON_TAKE,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Run the dispatch loop until *stop_event* is set or SIGINT/SIGTERM arrives.

    The connection is closed on every exit path.

    Raises:
        MessagingConnectionError: when the broker cannot be reached at startup.
    """
    stop = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            continue
        installed.append(sig)

    try:
        async with await open_connection(settings) as connection:
            consumer = TarantoolConsumer(
                connection, settings.tube, take_timeout=settings.take_timeout
            )
            dispatcher = EventDispatcher(
                consumer, build_registry(repository, auditor), ack_mode=ack_mode
            )
            logger.info("consuming tube %s at %s", settings.tube, settings.address)
            try:
                await dispatcher.run(stop)
            finally:
                await consumer.close()
                logger.info("consumer shut down (%s)", dispatcher.stats)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def main() -> None:
    parser = argparse.ArgumentParser(description="Analytics event consumer")
    parser.add_argument(
        "--env-prefix",
        default=DEFAULT_ENV_PREFIX,
        help="Prefix of the <PREFIX>_TARANTOOL_* variables",
    )
    parser.add_argument(
        "--ack-mode",
        choices=[mode.value for mode in AckMode],
        default=AckMode.ON_TAKE.value,
        help="Acknowledge on take (default) or after handling",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        settings = TarantoolSettings.from_env(args.env_prefix)
    except ValidationError as e:
        parser.exit(2, f"invalid configuration: {e.errors}\n")

    # Persistence is injected by the embedding service; standalone runs keep
    # events in memory.
    logger.warning("no persistence configured; events are kept in memory")
    try:
        asyncio.run(
            serve(
                settings,
                InMemoryDealEventRepository(),
                InMemoryAuditRecorder(),
                ack_mode=AckMode(args.ack_mode),
            )
        )
    except MessagingConnectionError as e:
        logger.error("tarantool connect: %s", e)
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
