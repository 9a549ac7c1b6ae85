from __future__ import annotations

from evm_decoder.app.application.services.priority_decode import decode_single_transaction
from evm_decoder.app.domain.models import PriorityDecodeResult
from evm_decoder.app.infrastructure.db.engine import create_app_async_engine
from evm_decoder.app.infrastructure.factories.decoder_factory import decoder_factory


async def decode_task(*, tx_id: str, backend: str = "sqlalchemy") -> PriorityDecodeResult:
    """Task: decode a single pending transaction right now (same path as a NOTIFY)."""
    engine = create_app_async_engine()
    wiring = decoder_factory(backend=backend, engine=engine)
    try:
        return await decode_single_transaction(
            store=wiring.store,
            pipeline=wiring.pipeline,
            tx_id=tx_id,
        )
    finally:
        await wiring.aclose()
        await engine.dispose()
