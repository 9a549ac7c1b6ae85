from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, AsyncIterator, Iterable

from sqlalchemy import Table, text
from sqlalchemy.dialects.postgresql import Insert, insert
from sqlalchemy.engine import RowMapping
from sqlalchemy.exc import DataError, DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from evm_decoder.app.domain.models import (
    ContractDraft,
    DecodedLog,
    DecodedTransaction,
    DecodeOutcome,
    OutcomeRejectedError,
    PendingWorkItem,
    TokenDraft,
    TokenTransferDraft,
)
from evm_decoder.app.domain.ports.out import DecodeSession, DecodeStore
from evm_decoder.app.infrastructure.db.models.api.evm_contracts import EvmContractsDB
from evm_decoder.app.infrastructure.db.models.api.evm_logs import EvmLogsDB
from evm_decoder.app.infrastructure.db.models.api.evm_token_transfers import EvmTokenTransfersDB
from evm_decoder.app.infrastructure.db.models.api.evm_tokens import EvmTokensDB
from evm_decoder.app.infrastructure.db.models.api.evm_transactions import EvmTransactionsDB

logger = logging.getLogger(__name__)

# Pending rows that already have a decoded transaction are skipped even if
# they were never deleted; claimed rows are locked until commit and skipped
# by concurrent consumers.
_SELECT_PENDING_SQL = text(
    """
    SELECT
        p.tx_id,
        p.raw_bytes,
        p.height,
        p.gas_used,
        p.known_hash
    FROM api.evm_pending_decode AS p
    WHERE NOT EXISTS (
        SELECT 1 FROM api.evm_transactions AS e WHERE e.tx_id = p.tx_id
    )
    LIMIT :limit
    FOR UPDATE OF p SKIP LOCKED
    """
)

# Waits for a batch holding the row. Once that batch commits the row is gone
# and the decoded-hash lookup sees the committed transaction.
_SELECT_PENDING_ITEM_SQL = text(
    """
    SELECT
        p.tx_id,
        p.raw_bytes,
        p.height,
        p.gas_used,
        p.known_hash
    FROM api.evm_pending_decode AS p
    WHERE p.tx_id = :tx_id
    LIMIT 1
    FOR UPDATE OF p
    """
)

_SELECT_DECODED_HASH_SQL = text(
    """
    SELECT hash FROM api.evm_transactions WHERE tx_id = :tx_id
    """
)

_SELECT_EXECUTION_RESPONSE_SQL = text(
    """
    SELECT COALESCE(
        tr.data -> 'txResponse' ->> 'data',
        tr.data -> 'tx_response' ->> 'data'
    ) AS response_data
    FROM api.transactions_raw AS tr
    WHERE tr.id = :tx_id
    """
)

_DELETE_PENDING_SQL = text(
    """
    DELETE FROM api.evm_pending_decode WHERE tx_id = :tx_id
    """
)


def _insert_ignore(table: Table, *conflict_columns: str) -> Insert:
    return insert(table).on_conflict_do_nothing(index_elements=list(conflict_columns))


INSERT_TRANSACTION = _insert_ignore(EvmTransactionsDB.__table__, "tx_id")
INSERT_LOG = _insert_ignore(EvmLogsDB.__table__, "tx_id", "log_index")
INSERT_TOKEN = _insert_ignore(EvmTokensDB.__table__, "address")
INSERT_TOKEN_TRANSFER = _insert_ignore(EvmTokenTransfersDB.__table__, "tx_id", "log_index")
INSERT_CONTRACT = _insert_ignore(EvmContractsDB.__table__, "address")


def _numeric(value: int | None) -> Decimal | None:
    return None if value is None else Decimal(value)


def transaction_row(tx: DecodedTransaction) -> dict[str, Any]:
    return {
        "tx_id": tx.tx_id,
        "hash": tx.hash,
        "from": tx.from_address,
        "to": tx.to_address,
        "nonce": tx.nonce,
        "gas_limit": tx.gas_limit,
        "gas_price": _numeric(tx.gas_price),
        "max_fee_per_gas": _numeric(tx.max_fee_per_gas),
        "max_priority_fee_per_gas": _numeric(tx.max_priority_fee_per_gas),
        "value": _numeric(tx.value),
        "data": tx.data,
        "type": tx.type,
        "chain_id": tx.chain_id,
        "gas_used": tx.gas_used,
        "status": int(tx.status),
        "function_name": tx.function_name,
        "function_signature": tx.function_signature,
    }


def log_rows(logs: Iterable[DecodedLog]) -> list[dict[str, Any]]:
    return [
        {
            "tx_id": log.tx_id,
            "log_index": log.log_index,
            "address": log.address,
            "topics": list(log.topics),
            "data": log.data,
        }
        for log in logs
    ]


def token_rows(tokens: Iterable[TokenDraft]) -> list[dict[str, Any]]:
    return [
        {
            "address": token.address,
            "type": token.type,
            "name": token.name,
            "symbol": token.symbol,
            "decimals": token.decimals,
            "first_seen_tx": token.first_seen_tx,
            "first_seen_height": token.first_seen_height,
        }
        for token in tokens
    ]


def transfer_rows(transfers: Iterable[TokenTransferDraft]) -> list[dict[str, Any]]:
    return [
        {
            "tx_id": transfer.tx_id,
            "log_index": transfer.log_index,
            "token_address": transfer.token_address,
            "from_address": transfer.from_address,
            "to_address": transfer.to_address,
            "value": transfer.value,
        }
        for transfer in transfers
    ]


def contract_row(contract: ContractDraft) -> dict[str, Any]:
    return {
        "address": contract.address,
        "creator": contract.creator,
        "creation_tx": contract.creation_tx,
        "creation_height": contract.creation_height,
        "bytecode_hash": contract.bytecode_hash,
    }


def _is_data_error(exc: DBAPIError) -> bool:
    if isinstance(exc, DataError):
        return True
    # SQLSTATE class 22: numeric value out of range, invalid text, ...
    sqlstate = getattr(exc.orig, "sqlstate", None) or ""
    if sqlstate.startswith("22"):
        return True
    # asyncpg rejects out-of-range parameters client-side with a ValueError
    return isinstance(getattr(exc.orig, "__cause__", None), ValueError)


def _pending_item(row: RowMapping) -> PendingWorkItem:
    return PendingWorkItem(
        tx_id=row["tx_id"],
        raw_bytes=row["raw_bytes"],
        height=row["height"],
        gas_used=row["gas_used"],
        known_hash=row["known_hash"],
    )


class SqlAlchemyDecodeSession(DecodeSession):
    """
    DecodeSession bound to one AsyncConnection inside an open transaction.

    Every insert uses ON CONFLICT DO NOTHING on the table's natural key, so
    replaying an item (restart, racing consumers, backfill) never duplicates
    or overwrites rows.
    """

    def __init__(self, conn: AsyncConnection) -> None:
        self._conn = conn

    @property
    def connection(self) -> AsyncConnection:
        return self._conn

    async def fetch_pending(self, *, limit: int) -> list[PendingWorkItem]:
        if limit <= 0:
            raise ValueError("limit must be positive")
        result = await self._conn.execute(_SELECT_PENDING_SQL, {"limit": limit})
        return [_pending_item(row) for row in result.mappings().all()]

    async def fetch_pending_item(self, *, tx_id: str) -> PendingWorkItem | None:
        result = await self._conn.execute(_SELECT_PENDING_ITEM_SQL, {"tx_id": tx_id})
        row = result.mappings().one_or_none()
        return _pending_item(row) if row is not None else None

    async def fetch_decoded_hash(self, *, tx_id: str) -> str | None:
        result = await self._conn.execute(_SELECT_DECODED_HASH_SQL, {"tx_id": tx_id})
        return result.scalar_one_or_none()

    async def fetch_execution_response(self, *, tx_id: str) -> str | None:
        result = await self._conn.execute(_SELECT_EXECUTION_RESPONSE_SQL, {"tx_id": tx_id})
        return result.scalar_one_or_none()

    async def save(self, outcome: DecodeOutcome) -> None:
        tx = outcome.transaction

        # One savepoint per item: a rejected row undoes only this item and
        # leaves the rest of the batch usable.
        try:
            async with self._conn.begin_nested():
                await self._write(outcome)
        except DBAPIError as exc:
            if exc.connection_invalidated or not _is_data_error(exc):
                raise
            raise OutcomeRejectedError(f"{tx.tx_id}: {exc.orig}") from exc

        logger.debug(
            "Saved %s: status=%s, logs=%s, tokens=%s, transfers=%s, contract=%s",
            tx.tx_id,
            int(tx.status),
            len(outcome.logs),
            len(outcome.tokens),
            len(outcome.transfers),
            outcome.contract.address if outcome.contract else None,
        )

    async def _write(self, outcome: DecodeOutcome) -> None:
        tx = outcome.transaction

        # Parent rows first: logs reference the transaction, transfers
        # reference both the log and the token.
        await self._conn.execute(INSERT_TRANSACTION, [transaction_row(tx)])

        if outcome.logs:
            await self._conn.execute(INSERT_LOG, log_rows(outcome.logs))
        if outcome.tokens:
            await self._conn.execute(INSERT_TOKEN, token_rows(outcome.tokens))
        if outcome.transfers:
            await self._conn.execute(INSERT_TOKEN_TRANSFER, transfer_rows(outcome.transfers))
        if outcome.contract is not None:
            await self._conn.execute(INSERT_CONTRACT, [contract_row(outcome.contract)])

        await self._conn.execute(_DELETE_PENDING_SQL, {"tx_id": tx.tx_id})


class SqlAlchemyDecodeStore(DecodeStore):
    """
    PostgreSQL/SQLAlchemy implementation of DecodeStore.

    transaction() wraps AsyncEngine.begin(): the yielded session commits when
    the block exits normally and rolls back when it raises.
    """

    def __init__(self, *, engine: AsyncEngine) -> None:
        self._engine = engine

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlAlchemyDecodeSession]:
        async with self._engine.begin() as conn:
            yield SqlAlchemyDecodeSession(conn)
