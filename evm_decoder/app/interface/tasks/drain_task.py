from __future__ import annotations

from evm_decoder.app.application.services.batch_drain import BatchDrainLoop
from evm_decoder.app.config import get_settings
from evm_decoder.app.infrastructure.db.engine import create_app_async_engine
from evm_decoder.app.infrastructure.factories.decoder_factory import decoder_factory
from evm_decoder.app.interface.tasks.shutdown import install_stop_event


async def drain_task(*, backend: str = "sqlalchemy") -> None:
    """Task: batch drain loop only (no priority listener)."""
    settings = get_settings()
    engine = create_app_async_engine()
    wiring = decoder_factory(backend=backend, engine=engine)
    try:
        drain = BatchDrainLoop(
            store=wiring.store,
            pipeline=wiring.pipeline,
            batch_size=settings.batch_size,
            poll_interval_s=settings.poll_interval_s,
        )
        await drain.run_forever(install_stop_event())
    finally:
        await wiring.aclose()
        await engine.dispose()
