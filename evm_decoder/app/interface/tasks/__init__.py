from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from .backfill_task import backfill_task
from .decode_task import decode_task
from .drain_task import drain_task
from .listen_task import listen_task
from .serve_task import serve_task

TaskFn = Callable[..., Awaitable[Any]]

TASKS: dict[str, TaskFn] = {
    "serve_task": serve_task,
    "drain_task": drain_task,
    "listen_task": listen_task,
    "decode_task": decode_task,
    "backfill_task": backfill_task,
}
