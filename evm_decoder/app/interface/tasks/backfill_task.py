from __future__ import annotations

from evm_decoder.app.application.services.run_backfill import run_backfill
from evm_decoder.app.domain.ports.out import BackfillReconciler
from evm_decoder.app.infrastructure.db.engine import create_app_async_engine
from evm_decoder.app.infrastructure.factories.backfill_reconciler_factory import (
    backfill_reconciler_factory,
)


async def backfill_task(*, backend: str = "sqlalchemy") -> dict[str, int]:
    """
    Task: repair the decoded tables.

    - re-derives logs from stored execution responses,
    - fills missing contracts, tokens and token transfers,
    - enriches token metadata via eth_call when EVM_RPC_URL is set.
    """
    engine = create_app_async_engine()
    try:
        reconciler: BackfillReconciler = backfill_reconciler_factory(
            backend=backend,
            engine=engine,
        )
        return await run_backfill(reconciler=reconciler)
    finally:
        await engine.dispose()
