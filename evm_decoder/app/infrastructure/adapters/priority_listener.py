from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from evm_decoder.app.domain.models import PriorityDecodeResult
from evm_decoder.app.domain.ports.out import NotificationConnection, NotificationConnector
from evm_decoder.app.infrastructure.adapters.reconnect_supervisor import ReconnectSupervisor

logger = logging.getLogger(__name__)

PriorityHandler = Callable[[str], Awaitable[PriorityDecodeResult]]

_LOG_PREFIX = "[Priority EVM Decoder]"


class ListenerState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    LISTENING = "listening"
    SHUTTING_DOWN = "shutting_down"


class PriorityListener:
    """
    LISTEN/NOTIFY driven intake for on-demand decodes.

    Each notification on `channel` carries a bare tx_id, which is handed to
    `handler` in its own task so a slow decode never blocks the connection.

    Connection lifecycle:
      DISCONNECTED -> CONNECTING -> LISTENING
      any failure (connect, LISTEN, connection terminated) -> DISCONNECTED and
      one reconnect scheduled through the ReconnectSupervisor
      shutdown() -> SHUTTING_DOWN (terminal)
    """

    def __init__(
        self,
        *,
        connector: NotificationConnector,
        handler: PriorityHandler,
        channel: str = "evm_decode_priority",
        reconnect_delay_s: float = 5.0,
    ) -> None:
        self._connector = connector
        self._handler = handler
        self._channel = channel
        self._state = ListenerState.DISCONNECTED
        self._conn: NotificationConnection | None = None
        self._in_flight: set[asyncio.Task[None]] = set()
        self._supervisor = ReconnectSupervisor(
            reconnect=self._connect,
            delay_s=reconnect_delay_s,
            name="Priority EVM Decoder",
        )

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def supervisor(self) -> ReconnectSupervisor:
        return self._supervisor

    @property
    def channel(self) -> str:
        return self._channel

    async def start(self) -> None:
        logger.info("%s Starting...", _LOG_PREFIX)
        await self._connect()

    async def shutdown(self) -> None:
        if self._state is ListenerState.SHUTTING_DOWN:
            return
        logger.info("%s Shutting down...", _LOG_PREFIX)
        self._state = ListenerState.SHUTTING_DOWN
        await self._supervisor.shutdown()

        conn, self._conn = self._conn, None
        if conn is not None and not conn.is_closed():
            await conn.close()

        # In-flight decodes finish (commit or roll back) on their own
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    async def _connect(self) -> None:
        if self._state is ListenerState.SHUTTING_DOWN:
            return

        self._state = ListenerState.CONNECTING
        conn: NotificationConnection | None = None
        try:
            conn = await self._connector()
            conn.add_termination_listener(self._on_termination)
            await conn.add_listener(self._channel, self._on_notification)
        except Exception as exc:
            logger.error("%s Failed to connect: %s", _LOG_PREFIX, exc)
            if conn is not None and not conn.is_closed():
                await _close_quietly(conn)
            self._on_connection_lost()
            return

        if self._state is ListenerState.SHUTTING_DOWN:
            # shutdown() ran while we were connecting
            await _close_quietly(conn)
            return

        self._conn = conn
        self._state = ListenerState.LISTENING
        logger.info("%s Listening for %s notifications", _LOG_PREFIX, self._channel)

    def _on_connection_lost(self) -> None:
        if self._state is ListenerState.SHUTTING_DOWN:
            return
        self._conn = None
        self._state = ListenerState.DISCONNECTED
        self._supervisor.schedule()

    def _on_termination(self, conn: Any) -> None:
        if conn is not self._conn:
            return
        logger.warning("%s Connection ended", _LOG_PREFIX)
        self._on_connection_lost()

    def _on_notification(self, conn: Any, pid: int, channel: str, payload: str) -> None:
        if channel != self._channel or not payload:
            return

        logger.info("%s Received request for %s", _LOG_PREFIX, payload)
        task = asyncio.get_running_loop().create_task(self._handle(payload))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _handle(self, tx_id: str) -> None:
        try:
            result = await self._handler(tx_id)
        except Exception:
            logger.exception("%s Error processing %s", _LOG_PREFIX, tx_id)
            return

        if result.success:
            logger.info("%s Decoded %s: %s", _LOG_PREFIX, tx_id, result.message)
        else:
            logger.warning("%s Failed %s: %s", _LOG_PREFIX, tx_id, result.message)


async def _close_quietly(conn: NotificationConnection) -> None:
    try:
        await conn.close()
    except Exception as exc:
        logger.debug("%s Ignoring error while closing connection: %s", _LOG_PREFIX, exc)
