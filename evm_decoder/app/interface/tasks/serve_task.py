from __future__ import annotations

from evm_decoder.app.application.services.batch_drain import BatchDrainLoop
from evm_decoder.app.config import get_settings
from evm_decoder.app.infrastructure.db.engine import create_app_async_engine
from evm_decoder.app.infrastructure.factories.decoder_factory import decoder_factory
from evm_decoder.app.infrastructure.factories.priority_listener_factory import (
    priority_listener_factory,
)
from evm_decoder.app.interface.tasks.shutdown import install_stop_event


async def serve_task(*, backend: str = "sqlalchemy") -> None:
    """
    Task: run the decoder daemon.

    - priority listener (LISTEN evm_decode_priority) for on-demand decodes,
    - batch drain loop over api.evm_pending_decode,
    - both stop on SIGINT/SIGTERM; in-flight transactions finish first.
    """
    settings = get_settings()
    engine = create_app_async_engine()
    wiring = decoder_factory(backend=backend, engine=engine)
    listener = priority_listener_factory(wiring=wiring)
    try:
        stop = install_stop_event()
        drain = BatchDrainLoop(
            store=wiring.store,
            pipeline=wiring.pipeline,
            batch_size=settings.batch_size,
            poll_interval_s=settings.poll_interval_s,
        )

        await listener.start()
        await drain.run_forever(stop)
    finally:
        await listener.shutdown()
        await wiring.aclose()
        await engine.dispose()
