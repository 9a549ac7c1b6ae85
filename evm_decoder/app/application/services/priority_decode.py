from __future__ import annotations

import logging

from evm_decoder.app.application.services.decode_pipeline import DecodePipeline
from evm_decoder.app.domain.models import PriorityDecodeResult
from evm_decoder.app.domain.ports.out import DecodeStore

logger = logging.getLogger(__name__)


async def decode_single_transaction(
    *,
    store: DecodeStore,
    pipeline: DecodePipeline,
    tx_id: str,
) -> PriorityDecodeResult:
    """
    Application-level use case for the priority (on-demand) decode path.

    Looks the item up in the pending queue and, when present, decodes and
    persists it and retires the pending row in one transaction. Misses are
    reported as results, not errors; any failure rolls the transaction back
    and is returned as an unsuccessful result.
    """
    tx_id = tx_id.strip()
    if not tx_id:
        return PriorityDecodeResult(success=False, message="Empty transaction id")

    try:
        async with store.transaction() as session:
            item = await session.fetch_pending_item(tx_id=tx_id)

            if item is None:
                existing_hash = await session.fetch_decoded_hash(tx_id=tx_id)
                if existing_hash is not None:
                    return PriorityDecodeResult(
                        success=True,
                        message="Transaction already decoded",
                        data={"tx_id": tx_id, "hash": existing_hash},
                    )
                return PriorityDecodeResult(
                    success=False,
                    message="Transaction not found in pending queue or decoded transactions",
                )

            outcome = await pipeline.process_item(session, item)
    except Exception as exc:
        logger.exception("Error decoding priority transaction %s", tx_id)
        return PriorityDecodeResult(success=False, message=str(exc) or exc.__class__.__name__)

    tx = outcome.transaction
    if outcome.is_placeholder:
        logger.warning("Priority transaction %s could not be decoded; placeholder stored", tx_id)
        return PriorityDecodeResult(
            success=False,
            message="Failed to decode transaction",
            data={"tx_id": tx_id, "hash": tx.hash, "status": int(tx.status)},
        )

    logger.info("Decoded priority transaction: %s", tx_id)
    return PriorityDecodeResult(
        success=True,
        message="Transaction decoded successfully",
        data={
            "tx_id": tx_id,
            "hash": tx.hash,
            "status": int(tx.status),
            "logs": len(outcome.logs),
            "transfers": len(outcome.transfers),
            "contract": outcome.contract.address if outcome.contract else None,
        },
    )
