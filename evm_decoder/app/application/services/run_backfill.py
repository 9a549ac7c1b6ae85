from __future__ import annotations

import logging

from evm_decoder.app.domain.ports.out import BackfillReconciler

logger = logging.getLogger(__name__)


async def run_backfill(*, reconciler: BackfillReconciler) -> dict[str, int]:
    """
    Run every backfill phase once, in dependency order.

    Logs go first so the later phases see the re-derived Transfer events;
    tokens go before transfers because transfers reference token rows.
    """
    counts = {
        "logs": await reconciler.backfill_logs(),
        "contracts": await reconciler.backfill_contracts(),
        "tokens": await reconciler.backfill_tokens(),
        "token_transfers": await reconciler.backfill_token_transfers(),
        "token_metadata": await reconciler.backfill_token_metadata(),
    }

    logger.info(
        "=== Backfill Complete === logs=%s contracts=%s tokens=%s transfers=%s metadata=%s",
        counts["logs"],
        counts["contracts"],
        counts["tokens"],
        counts["token_transfers"],
        counts["token_metadata"],
    )
    return counts
