from __future__ import annotations

from evm_decoder.app.infrastructure.db.engine import create_app_async_engine
from evm_decoder.app.infrastructure.factories.decoder_factory import decoder_factory
from evm_decoder.app.infrastructure.factories.priority_listener_factory import (
    priority_listener_factory,
)
from evm_decoder.app.interface.tasks.shutdown import install_stop_event


async def listen_task(*, backend: str = "sqlalchemy") -> None:
    """Task: priority listener only; decodes tx_ids as they are NOTIFYed."""
    engine = create_app_async_engine()
    wiring = decoder_factory(backend=backend, engine=engine)
    listener = priority_listener_factory(wiring=wiring)
    try:
        stop = install_stop_event()
        await listener.start()
        await stop.wait()
    finally:
        await listener.shutdown()
        await wiring.aclose()
        await engine.dispose()
