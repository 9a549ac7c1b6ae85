from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class ReconnectSupervisor:
    """
    Owns the single reconnect timer of a long-lived connection.

    - schedule() arms at most one timer; calls while a timer is pending are
      ignored,
    - after shutdown() nothing is ever scheduled again and the pending timer
      (if any) is cancelled,
    - the reconnect coroutine runs as a task so a failure inside it can call
      schedule() again.
    """

    def __init__(
        self,
        *,
        reconnect: Callable[[], Awaitable[None]],
        delay_s: float = 5.0,
        name: str = "listener",
    ) -> None:
        if delay_s < 0:
            raise ValueError("delay_s must be non-negative")
        self._reconnect = reconnect
        self._delay_s = delay_s
        self._name = name
        self._timer: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[None] | None = None
        self._attempts = 0
        self._shutting_down = False

    @property
    def delay_s(self) -> float:
        return self._delay_s

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def pending(self) -> bool:
        return self._timer is not None

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def schedule(self) -> bool:
        """Arm the reconnect timer; returns False when the call was suppressed."""
        if self._timer is not None or self._shutting_down:
            return False

        self._attempts += 1
        logger.info("[%s] Reconnecting in %s seconds...", self._name, self._delay_s)
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._delay_s, self._fire)
        return True

    async def shutdown(self) -> None:
        self._shutting_down = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    def _fire(self) -> None:
        self._timer = None
        if self._shutting_down:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        try:
            await self._reconnect()
        except Exception:
            logger.exception("[%s] Reconnect attempt failed", self._name)
            self.schedule()
