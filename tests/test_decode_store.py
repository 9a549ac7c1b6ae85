"""Tests for the SQLAlchemy decode store: statements, row mapping, write order."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import DataError, DBAPIError, OperationalError

from evm_decoder.app.domain.models import (
    ContractDraft,
    DecodedLog,
    DecodedTransaction,
    DecodeOutcome,
    OutcomeRejectedError,
    TokenDraft,
    TokenTransferDraft,
    TxStatus,
)
from evm_decoder.app.infrastructure.adapters.decode_store import (
    INSERT_CONTRACT,
    INSERT_LOG,
    INSERT_TOKEN,
    INSERT_TOKEN_TRANSFER,
    INSERT_TRANSACTION,
    SqlAlchemyDecodeSession,
    SqlAlchemyDecodeStore,
    log_rows,
    transaction_row,
)


def compiled(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


def sample_outcome() -> DecodeOutcome:
    tx = DecodedTransaction(
        tx_id="tx-1",
        hash="0x" + "ab" * 32,
        from_address="0x2c7536E3605D9C16a7a3D7b1898e529396a65c23",
        to_address=None,
        nonce=0,
        gas_limit=500_000,
        gas_price=10**9,
        max_fee_per_gas=None,
        max_priority_fee_per_gas=None,
        value=2**200,
        data="0x6080",
        type=0,
        chain_id=9001,
        gas_used=120_000,
    )
    log = DecodedLog(tx_id="tx-1", log_index=0, address="0xtoken", topics=("0xa", "0xb", "0xc"), data="0x01")
    return DecodeOutcome(
        transaction=tx,
        logs=(log,),
        tokens=(TokenDraft(address="0xtoken", first_seen_tx="tx-1", first_seen_height=7),),
        transfers=(
            TokenTransferDraft(
                tx_id="tx-1",
                log_index=0,
                token_address="0xtoken",
                from_address="0xb",
                to_address="0xc",
                value="0x01",
            ),
        ),
        contract=ContractDraft(
            address="0xcontract",
            creator="0x2c7536e3605d9c16a7a3d7b1898e529396a65c23",
            creation_tx="tx-1",
            creation_height=7,
            bytecode_hash=None,
        ),
    )


class TestStatements:
    def test_inserts_ignore_conflicts_on_natural_keys(self):
        assert "ON CONFLICT (tx_id) DO NOTHING" in compiled(INSERT_TRANSACTION)
        assert "ON CONFLICT (tx_id, log_index) DO NOTHING" in compiled(INSERT_LOG)
        assert "ON CONFLICT (address) DO NOTHING" in compiled(INSERT_TOKEN)
        assert "ON CONFLICT (tx_id, log_index) DO NOTHING" in compiled(INSERT_TOKEN_TRANSFER)
        assert "ON CONFLICT (address) DO NOTHING" in compiled(INSERT_CONTRACT)

    def test_targets_api_schema(self):
        assert "api.evm_transactions" in compiled(INSERT_TRANSACTION)
        assert "api.evm_token_transfers" in compiled(INSERT_TOKEN_TRANSFER)


class TestRowMapping:
    def test_transaction_row_uses_column_names(self):
        row = transaction_row(sample_outcome().transaction)

        assert row["from"] == "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"
        assert row["to"] is None
        assert row["value"] == Decimal(2**200)
        assert row["status"] == int(TxStatus.SUCCESS)
        assert set(row) <= set(INSERT_TRANSACTION.table.c.keys())

    def test_placeholder_row(self):
        row = transaction_row(DecodedTransaction.placeholder("abcdef0123456789ffff"))

        assert row["hash"] == "decode_failed_abcdef0123456789"
        assert row["status"] == -1
        assert row["from"] == ""

    def test_log_rows_keep_topic_order(self):
        rows = log_rows(sample_outcome().logs)

        assert rows[0]["topics"] == ["0xa", "0xb", "0xc"]


class TestSession:
    def test_save_writes_parents_first_then_retires_pending(self):
        conn = MagicMock()
        conn.execute = AsyncMock()
        session = SqlAlchemyDecodeSession(conn)

        asyncio.run(session.save(sample_outcome()))

        statements = [call.args[0] for call in conn.execute.await_args_list]
        assert statements[:5] == [
            INSERT_TRANSACTION,
            INSERT_LOG,
            INSERT_TOKEN,
            INSERT_TOKEN_TRANSFER,
            INSERT_CONTRACT,
        ]
        last = conn.execute.await_args_list[-1]
        assert "DELETE FROM api.evm_pending_decode" in str(last.args[0])
        assert last.args[1] == {"tx_id": "tx-1"}

    def test_placeholder_only_writes_transaction(self):
        conn = MagicMock()
        conn.execute = AsyncMock()
        session = SqlAlchemyDecodeSession(conn)

        asyncio.run(session.save(DecodeOutcome(transaction=DecodedTransaction.placeholder("tx-bad"))))

        assert conn.execute.await_count == 2
        assert conn.execute.await_args_list[0].args[0] is INSERT_TRANSACTION

    def test_fetch_pending_rejects_non_positive_limit(self):
        session = SqlAlchemyDecodeSession(MagicMock())

        with pytest.raises(ValueError):
            asyncio.run(session.fetch_pending(limit=0))

    def test_pending_claim_skips_locked_rows(self):
        conn = MagicMock()
        result = MagicMock()
        result.mappings.return_value.all.return_value = [
            {"tx_id": "tx-1", "raw_bytes": "AA==", "height": 5, "gas_used": None, "known_hash": None}
        ]
        conn.execute = AsyncMock(return_value=result)
        session = SqlAlchemyDecodeSession(conn)

        items = asyncio.run(session.fetch_pending(limit=10))

        sql = str(conn.execute.await_args.args[0])
        assert "FOR UPDATE OF p SKIP LOCKED" in sql
        assert "NOT EXISTS" in sql
        assert conn.execute.await_args.args[1] == {"limit": 10}
        assert items[0].tx_id == "tx-1"
        assert items[0].height == 5

    def test_single_item_lookup_waits_for_locked_row(self):
        conn = MagicMock()
        result = MagicMock()
        result.mappings.return_value.one_or_none.return_value = None
        conn.execute = AsyncMock(return_value=result)
        session = SqlAlchemyDecodeSession(conn)

        item = asyncio.run(session.fetch_pending_item(tx_id="tx-1"))

        # a row held by a running batch must not read as "not found"
        sql = str(conn.execute.await_args.args[0])
        assert "FOR UPDATE OF p" in sql
        assert "SKIP LOCKED" not in sql
        assert conn.execute.await_args.args[1] == {"tx_id": "tx-1"}
        assert item is None


class TestStore:
    def test_transaction_wraps_engine_begin(self):
        conn = MagicMock()
        begin_ctx = MagicMock()
        begin_ctx.__aenter__ = AsyncMock(return_value=conn)
        begin_ctx.__aexit__ = AsyncMock(return_value=False)
        engine = MagicMock()
        engine.begin.return_value = begin_ctx
        store = SqlAlchemyDecodeStore(engine=engine)

        async def scenario():
            async with store.transaction() as session:
                return session

        session = asyncio.run(scenario())

        engine.begin.assert_called_once_with()
        assert session.connection is conn
        begin_ctx.__aexit__.assert_awaited_once()


class _NumericOutOfRange(Exception):
    sqlstate = "22003"


class TestRowRejection:
    def make_session(self, error):
        conn = MagicMock()
        conn.execute = AsyncMock(side_effect=error)
        return conn, SqlAlchemyDecodeSession(conn)

    def test_save_runs_in_a_savepoint(self):
        conn = MagicMock()
        conn.execute = AsyncMock()
        session = SqlAlchemyDecodeSession(conn)

        asyncio.run(session.save(sample_outcome()))

        conn.begin_nested.assert_called_once_with()
        conn.begin_nested.return_value.__aexit__.assert_awaited_once()

    @pytest.mark.parametrize(
        "error",
        [
            DataError("INSERT", {}, Exception("integer out of range")),
            DBAPIError("INSERT", {}, _NumericOutOfRange("numeric value out of range")),
        ],
    )
    def test_data_errors_reject_the_outcome(self, error):
        _, session = self.make_session(error)

        with pytest.raises(OutcomeRejectedError, match="tx-1"):
            asyncio.run(session.save(sample_outcome()))

    def test_other_database_errors_propagate(self):
        _, session = self.make_session(OperationalError("INSERT", {}, Exception("deadlock detected")))

        with pytest.raises(OperationalError):
            asyncio.run(session.save(sample_outcome()))

    def test_lost_connection_propagates(self):
        error = DataError("INSERT", {}, Exception("server closed the connection"), connection_invalidated=True)
        _, session = self.make_session(error)

        with pytest.raises(DataError):
            asyncio.run(session.save(sample_outcome()))
