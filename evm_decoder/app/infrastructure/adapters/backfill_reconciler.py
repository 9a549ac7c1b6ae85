from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from evm_decoder.app.domain.models import ContractDraft, DecodedLog, TokenDraft
from evm_decoder.app.domain.ports.out import (
    BackfillReconciler,
    Erc20TokenMetadataFetcher,
    ExecutionResultDecoder,
)
from evm_decoder.app.infrastructure.adapters.decode_store import (
    INSERT_CONTRACT,
    INSERT_LOG,
    INSERT_TOKEN,
    INSERT_TOKEN_TRANSFER,
    contract_row,
    log_rows,
    token_rows,
    transfer_rows,
)
from evm_decoder.app.infrastructure.decoders.erc20.transfer_classifier import TransferLogClassifier
from evm_decoder.app.infrastructure.decoders.evm.contract_address import (
    bytecode_hash,
    derive_contract_address,
)

logger = logging.getLogger(__name__)

_RESPONSE_DATA_EXPR = (
    "COALESCE(tr.data -> 'txResponse' ->> 'data', tr.data -> 'tx_response' ->> 'data')"
)

# Keyset pagination: rows that gain logs drop out of the NOT EXISTS filter,
# so OFFSET would skip unprocessed rows.
_SELECT_TXS_WITHOUT_LOGS_SQL = text(
    f"""
    SELECT
        e.tx_id,
        t.height,
        {_RESPONSE_DATA_EXPR} AS response_data
    FROM api.evm_transactions AS e
    JOIN api.transactions_main AS t
      ON t.id = e.tx_id
    JOIN api.transactions_raw AS tr
      ON tr.id = e.tx_id
    WHERE e.status <> -1
      AND NOT EXISTS (SELECT 1 FROM api.evm_logs AS l WHERE l.tx_id = e.tx_id)
      AND {_RESPONSE_DATA_EXPR} IS NOT NULL
      AND (t.height, e.tx_id) > (:after_height, :after_tx_id)
    ORDER BY t.height, e.tx_id
    LIMIT :limit
    """
)

_SELECT_MISSING_CONTRACTS_SQL = text(
    """
    SELECT
        e.tx_id,
        e."from"  AS creator,
        e.nonce,
        e.data    AS bytecode,
        t.height  AS creation_height
    FROM api.evm_transactions AS e
    LEFT JOIN api.transactions_main AS t
      ON t.id = e.tx_id
    WHERE e."to" IS NULL
      AND e.status = 1
      AND e."from" <> ''
      AND NOT EXISTS (
        SELECT 1 FROM api.evm_contracts AS c WHERE c.creation_tx = e.tx_id
      )
    """
)

_SELECT_MISSING_TOKENS_SQL = text(
    """
    SELECT DISTINCT ON (l.address)
        l.address AS token_address,
        l.tx_id   AS first_tx,
        t.height  AS first_height
    FROM api.evm_logs AS l
    LEFT JOIN api.transactions_main AS t
      ON t.id = l.tx_id
    WHERE l.topics[1] = :transfer_topic
      AND array_length(l.topics, 1) >= 3
      AND NOT EXISTS (
        SELECT 1 FROM api.evm_tokens AS tk WHERE tk.address = l.address
      )
    ORDER BY l.address, t.height NULLS LAST, l.tx_id
    """
)

_SELECT_MISSING_TRANSFERS_SQL = text(
    """
    SELECT
        l.tx_id,
        l.log_index,
        l.address,
        l.topics,
        l.data,
        t.height
    FROM api.evm_logs AS l
    LEFT JOIN api.transactions_main AS t
      ON t.id = l.tx_id
    WHERE l.topics[1] = :transfer_topic
      AND array_length(l.topics, 1) >= 3
      AND NOT EXISTS (
        SELECT 1 FROM api.evm_token_transfers AS tt
        WHERE tt.tx_id = l.tx_id AND tt.log_index = l.log_index
      )
    LIMIT :limit
    """
)

_SELECT_TOKENS_MISSING_METADATA_SQL = text(
    """
    SELECT address
    FROM api.evm_tokens
    WHERE name IS NULL
       OR symbol IS NULL
       OR decimals IS NULL
    ORDER BY address
    """
)

# Existing values win: enrichment only fills NULL columns.
_UPSERT_TOKEN_SQL = text(
    """
    INSERT INTO api.evm_tokens (
        address,
        type,
        name,
        symbol,
        decimals,
        first_seen_tx,
        first_seen_height
    )
    VALUES (
        :address,
        :type,
        :name,
        :symbol,
        :decimals,
        :first_seen_tx,
        :first_seen_height
    )
    ON CONFLICT (address) DO UPDATE SET
        name = COALESCE(api.evm_tokens.name, EXCLUDED.name),
        symbol = COALESCE(api.evm_tokens.symbol, EXCLUDED.symbol),
        decimals = COALESCE(api.evm_tokens.decimals, EXCLUDED.decimals),
        first_seen_tx = COALESCE(api.evm_tokens.first_seen_tx, EXCLUDED.first_seen_tx),
        first_seen_height = COALESCE(api.evm_tokens.first_seen_height, EXCLUDED.first_seen_height)
    """
)

_FILL_TOKEN_METADATA_SQL = text(
    """
    UPDATE api.evm_tokens SET
        name = COALESCE(name, :name),
        symbol = COALESCE(symbol, :symbol),
        decimals = COALESCE(decimals, :decimals)
    WHERE address = :address
    """
)


def _chunks(seq: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for i in range(0, len(seq), size):
        yield seq[i : i + size]


class SqlAlchemyBackfillReconciler(BackfillReconciler):
    """
    One-shot repair job over the decoded tables.

    Phases (each idempotent, each safe to re-run on its own):
    - logs:            decoded txs without logs -> re-decode the stored tx
                       response, insert logs / tokens / transfers,
    - contracts:       successful creation txs without a contract row,
    - tokens:          Transfer logs whose emitter has no token row,
    - token transfers: Transfer logs without a transfer row (bounded),
    - token metadata:  tokens with NULL name/symbol/decimals.

    Metadata fetches are best-effort: a failing fetch leaves the columns NULL
    and never stops the phase.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        response_decoder: ExecutionResultDecoder,
        classifier: TransferLogClassifier | None = None,
        metadata_fetcher: Erc20TokenMetadataFetcher | None = None,
        batch_size: int = 100,
        transfer_limit: int = 10_000,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if transfer_limit <= 0:
            raise ValueError("transfer_limit must be positive")
        self._engine = engine
        self._response_decoder = response_decoder
        self._classifier = classifier or TransferLogClassifier()
        self._metadata_fetcher = metadata_fetcher
        self._batch_size = batch_size
        self._transfer_limit = transfer_limit

    async def backfill_logs(self) -> int:
        logger.info("=== Backfilling EVM Logs ===")

        logs_total = 0
        tokens_total = 0
        transfers_total = 0
        after_height, after_tx_id = -1, ""

        while True:
            async with self._engine.connect() as conn:
                result = await conn.execute(
                    _SELECT_TXS_WITHOUT_LOGS_SQL,
                    {
                        "after_height": after_height,
                        "after_tx_id": after_tx_id,
                        "limit": self._batch_size,
                    },
                )
                rows = result.mappings().all()

            if not rows:
                break

            for row in rows:
                decoded = self._response_decoder.decode(row["response_data"])
                if decoded is None or not decoded.logs:
                    continue

                decoded = decoded.with_tx_id(row["tx_id"])
                classification = self._classifier.classify_logs(
                    decoded.logs,
                    tx_id=row["tx_id"],
                    height=row["height"],
                )

                try:
                    async with self._engine.begin() as conn:
                        await conn.execute(INSERT_LOG, log_rows(decoded.logs))
                        if classification.token_candidates:
                            await conn.execute(INSERT_TOKEN, token_rows(classification.token_candidates))
                        if classification.transfers:
                            await conn.execute(INSERT_TOKEN_TRANSFER, transfer_rows(classification.transfers))
                except Exception:
                    logger.exception("Error processing %s", row["tx_id"])
                    continue

                logs_total += len(decoded.logs)
                tokens_total += len(classification.token_candidates)
                transfers_total += len(classification.transfers)

            last = rows[-1]
            after_height, after_tx_id = last["height"], last["tx_id"]
            logger.info(
                "  Logs: %s, Tokens: %s, Transfers: %s",
                logs_total,
                tokens_total,
                transfers_total,
            )

        return logs_total

    async def backfill_contracts(self) -> int:
        logger.info("=== Backfilling Contracts ===")

        async with self._engine.connect() as conn:
            result = await conn.execute(_SELECT_MISSING_CONTRACTS_SQL)
            rows = result.mappings().all()

        total = len(rows)
        logger.info("Found %s missing contracts", total)

        count = 0
        for batch in _chunks(rows, self._batch_size):
            payload = [
                contract_row(
                    ContractDraft(
                        address=derive_contract_address(r["creator"], r["nonce"]),
                        creator=r["creator"].lower(),
                        creation_tx=r["tx_id"],
                        creation_height=r["creation_height"],
                        bytecode_hash=bytecode_hash(r["bytecode"]),
                    )
                )
                for r in batch
            ]
            async with self._engine.begin() as conn:
                await conn.execute(INSERT_CONTRACT, payload)

            count += len(payload)
            logger.info("  Contracts %s/%s", count, total)

        return count

    async def backfill_tokens(self) -> int:
        logger.info("=== Backfilling Tokens from Transfer Events ===")

        async with self._engine.connect() as conn:
            result = await conn.execute(
                _SELECT_MISSING_TOKENS_SQL,
                {"transfer_topic": self._classifier.transfer_topic},
            )
            rows = result.mappings().all()

        total = len(rows)
        logger.info("Found %s tokens with Transfer events but no evm_tokens entry", total)

        count = 0
        fetch_errors = 0
        for batch in _chunks(rows, self._batch_size):
            payload: list[dict[str, Any]] = []
            for r in batch:
                meta, failed = await self._fetch_metadata(r["token_address"])
                fetch_errors += failed
                payload.extend(
                    token_rows(
                        [
                            TokenDraft(
                                address=r["token_address"],
                                first_seen_tx=r["first_tx"],
                                first_seen_height=r["first_height"],
                                name=meta.get("name"),
                                symbol=meta.get("symbol"),
                                decimals=meta.get("decimals"),
                            )
                        ]
                    )
                )

            async with self._engine.begin() as conn:
                await conn.execute(_UPSERT_TOKEN_SQL, payload)

            count += len(payload)
            logger.info("  Tokens %s/%s (fetch_errors=%s)", count, total, fetch_errors)

        return count

    async def backfill_token_transfers(self) -> int:
        logger.info("=== Backfilling Token Transfers ===")

        async with self._engine.connect() as conn:
            result = await conn.execute(
                _SELECT_MISSING_TRANSFERS_SQL,
                {
                    "transfer_topic": self._classifier.transfer_topic,
                    "limit": self._transfer_limit,
                },
            )
            rows = result.mappings().all()

        logger.info("Found %s Transfer events without token_transfers entries", len(rows))

        count = 0
        for batch in _chunks(rows, self._batch_size):
            tokens: dict[str, TokenDraft] = {}
            transfers = []
            for r in batch:
                log = DecodedLog(
                    tx_id=r["tx_id"],
                    log_index=r["log_index"],
                    address=r["address"],
                    topics=tuple(r["topics"]),
                    data=r["data"] or "0x",
                )
                classification = self._classifier.classify_logs(
                    [log],
                    tx_id=r["tx_id"],
                    height=r["height"],
                    known_tokens=tokens.keys(),
                )
                tokens.update({t.address: t for t in classification.token_candidates})
                transfers.extend(classification.transfers)

            if not transfers:
                continue

            async with self._engine.begin() as conn:
                # token rows first (FK); existing rows are left untouched
                await conn.execute(INSERT_TOKEN, token_rows(tokens.values()))
                await conn.execute(INSERT_TOKEN_TRANSFER, transfer_rows(transfers))

            count += len(transfers)

        logger.info("  Inserted %s token transfers", count)
        return count

    async def backfill_token_metadata(self) -> int:
        logger.info("=== Backfilling Token Metadata ===")

        if self._metadata_fetcher is None:
            logger.info("EVM RPC not configured - token metadata will not be fetched")
            return 0

        async with self._engine.connect() as conn:
            result = await conn.execute(_SELECT_TOKENS_MISSING_METADATA_SQL)
            addresses = [r["address"] for r in result.mappings().all()]

        total = len(addresses)
        logger.info("Found %s tokens with incomplete metadata", total)

        count = 0
        fetch_errors = 0
        for batch in _chunks(addresses, self._batch_size):
            payload: list[dict[str, Any]] = []
            for address in batch:
                meta, failed = await self._fetch_metadata(address)
                fetch_errors += failed
                if any(meta.get(k) is not None for k in ("name", "symbol", "decimals")):
                    payload.append(
                        {
                            "address": address,
                            "name": meta.get("name"),
                            "symbol": meta.get("symbol"),
                            "decimals": meta.get("decimals"),
                        }
                    )

            if payload:
                async with self._engine.begin() as conn:
                    await conn.execute(_FILL_TOKEN_METADATA_SQL, payload)

            count += len(payload)
            logger.info("  Enriched %s tokens (fetch_errors=%s)", count, fetch_errors)

        return count

    async def _fetch_metadata(self, token_address: str) -> tuple[dict[str, Any], int]:
        if self._metadata_fetcher is None:
            return {}, 0
        try:
            return await self._metadata_fetcher.fetch(token_address=token_address), 0
        except Exception as exc:
            logger.debug("Metadata fetch failed for %s: %s", token_address, exc)
            return {}, 1
