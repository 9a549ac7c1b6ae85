from __future__ import annotations

import asyncio
import logging
import signal

logger = logging.getLogger(__name__)


def install_stop_event() -> asyncio.Event:
    """Event set on the first SIGINT/SIGTERM; long-running tasks exit when it fires."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _on_signal(sig: signal.Signals) -> None:
        if not stop.is_set():
            logger.info("Received %s, shutting down...", sig.name)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, sig)
        except NotImplementedError:
            # Windows event loops: KeyboardInterrupt still stops asyncio.run
            pass

    return stop
