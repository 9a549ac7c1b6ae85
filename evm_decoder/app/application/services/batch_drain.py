from __future__ import annotations

import asyncio
import logging

from evm_decoder.app.application.services.decode_pipeline import DecodePipeline
from evm_decoder.app.domain.ports.out import DecodeStore

logger = logging.getLogger(__name__)


class BatchDrainLoop:
    """
    Steady-state consumer of api.evm_pending_decode.

    Every poll claims up to batch_size items and decodes them sequentially
    inside a single transaction: the whole batch commits, or none of it does.
    Successfully processed items are retired by the same transaction, so the
    next poll never sees them again.
    """

    def __init__(
        self,
        *,
        store: DecodeStore,
        pipeline: DecodePipeline,
        batch_size: int = 100,
        poll_interval_s: float = 5.0,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if poll_interval_s <= 0:
            raise ValueError("poll_interval_s must be positive")
        self._store = store
        self._pipeline = pipeline
        self._batch_size = batch_size
        self._poll_interval_s = poll_interval_s
        self._consecutive_empty_batches = 0

    @property
    def consecutive_empty_batches(self) -> int:
        return self._consecutive_empty_batches

    async def run_once(self) -> int:
        """Process one batch; returns the number of items decoded."""
        async with self._store.transaction() as session:
            items = await session.fetch_pending(limit=self._batch_size)
            if not items:
                self._record_empty()
                return 0

            logger.info("Processing %s EVM transactions...", len(items))

            known_tokens: set[str] = set()
            failed = 0
            for item in items:
                outcome = await self._pipeline.process_item(session, item, known_tokens=known_tokens)
                if outcome.is_placeholder:
                    failed += 1

        self._consecutive_empty_batches = 0
        logger.info("Decoded %s transactions (placeholders=%s)", len(items), failed)
        return len(items)

    async def run_forever(self, stop: asyncio.Event) -> None:
        logger.info(
            "Batch drain loop started: batch_size=%s, poll_interval=%ss",
            self._batch_size,
            self._poll_interval_s,
        )
        while not stop.is_set():
            delay = self._poll_interval_s
            try:
                await self.run_once()
            except Exception:
                # The batch transaction was rolled back; retry on a later poll
                logger.exception("Batch processing failed")
                delay = self._poll_interval_s * 2

            await _sleep_until(stop, delay)

        logger.info("Batch drain loop stopped")

    def _record_empty(self) -> None:
        self._consecutive_empty_batches += 1
        if self._consecutive_empty_batches == 1:
            logger.info("No pending EVM transactions, polling...")


async def _sleep_until(stop: asyncio.Event, delay: float) -> None:
    try:
        await asyncio.wait_for(stop.wait(), timeout=delay)
    except asyncio.TimeoutError:
        pass
