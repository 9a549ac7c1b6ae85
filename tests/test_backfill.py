"""
Tests for the backfill reconciler phases and the run_backfill service.

FakeEngine replays canned SELECT results in order and records every
statement, so each phase can be checked without a database.
"""

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.sql.elements import TextClause

from conftest import ALICE, BOB, TOKEN_ADDRESS, address_word, build_response_hex, transfer_log
from evm_decoder.app.application.services.run_backfill import run_backfill
from evm_decoder.app.infrastructure.adapters.backfill_reconciler import SqlAlchemyBackfillReconciler
from evm_decoder.app.infrastructure.adapters.decode_store import (
    INSERT_CONTRACT,
    INSERT_LOG,
    INSERT_TOKEN,
    INSERT_TOKEN_TRANSFER,
)
from evm_decoder.app.infrastructure.decoders.erc20.transfer_classifier import TRANSFER_TOPIC
from evm_decoder.app.infrastructure.decoders.evm.execution_result_decoder import (
    ProtobufExecutionResultDecoder,
)

CREATOR = "0x6ac7ea33f8831ea9dcc53393aaa88b25a785dbf0"


class _Result:
    def __init__(self, rows):
        self._rows = rows

    def mappings(self):
        return self

    def all(self):
        return list(self._rows)


class FakeConnection:
    def __init__(self, engine):
        self._engine = engine

    async def execute(self, stmt, params=None):
        self._engine.executed.append((stmt, params))
        if isinstance(stmt, TextClause) and stmt.text.lstrip().upper().startswith("SELECT"):
            rows = self._engine.selects.pop(0) if self._engine.selects else []
            return _Result(rows)
        return _Result([])


class FakeEngine:
    def __init__(self, *selects):
        self.selects = list(selects)
        self.executed = []

    @asynccontextmanager
    async def connect(self):
        yield FakeConnection(self)

    @asynccontextmanager
    async def begin(self):
        yield FakeConnection(self)

    def writes(self, stmt):
        return [params for executed, params in self.executed if executed is stmt]

    def writes_matching(self, fragment):
        return [
            params
            for executed, params in self.executed
            if isinstance(executed, TextClause) and fragment in executed.text
        ]


def make_reconciler(engine, *, fetcher=None, **kwargs):
    return SqlAlchemyBackfillReconciler(
        engine,
        response_decoder=ProtobufExecutionResultDecoder(),
        metadata_fetcher=fetcher,
        **kwargs,
    )


class TestBackfillLogs:
    def test_re_derives_logs_tokens_and_transfers(self, schema):
        engine = FakeEngine(
            [
                {
                    "tx_id": "tx-1",
                    "height": 10,
                    "response_data": build_response_hex(schema, logs=[transfer_log(index=2)]),
                },
                {"tx_id": "tx-2", "height": 11, "response_data": "not hex"},
            ],
            [],
        )

        count = asyncio.run(make_reconciler(engine).backfill_logs())

        assert count == 1
        [logs] = engine.writes(INSERT_LOG)
        assert logs[0]["tx_id"] == "tx-1"
        assert logs[0]["log_index"] == 2
        [tokens] = engine.writes(INSERT_TOKEN)
        assert tokens[0]["address"] == TOKEN_ADDRESS
        assert tokens[0]["first_seen_height"] == 10
        [transfers] = engine.writes(INSERT_TOKEN_TRANSFER)
        assert (transfers[0]["from_address"], transfers[0]["to_address"]) == (ALICE, BOB)

    def test_pages_by_height_and_tx_id(self, schema):
        response = build_response_hex(schema, logs=[transfer_log()])
        engine = FakeEngine(
            [{"tx_id": "tx-1", "height": 10, "response_data": response}],
            [{"tx_id": "tx-2", "height": 12, "response_data": response}],
            [],
        )

        count = asyncio.run(make_reconciler(engine, batch_size=1).backfill_logs())

        assert count == 2
        pages = [params for stmt, params in engine.executed if params and "after_height" in params]
        assert [(p["after_height"], p["after_tx_id"]) for p in pages] == [(-1, ""), (10, "tx-1"), (12, "tx-2")]


class TestBackfillContracts:
    def test_derives_missing_contracts(self):
        engine = FakeEngine(
            [
                {"tx_id": "tx-c0", "creator": CREATOR, "nonce": 0, "bytecode": "0x6080", "creation_height": 3},
                {"tx_id": "tx-c1", "creator": CREATOR, "nonce": 1, "bytecode": "0x", "creation_height": 4},
            ]
        )

        count = asyncio.run(make_reconciler(engine).backfill_contracts())

        assert count == 2
        [rows] = engine.writes(INSERT_CONTRACT)
        assert [r["address"] for r in rows] == [
            "0xcd234a471b72ba2f1ccf0a70fcaba648a5eecd8d",
            "0x343c43a37d37dff08ae8c4a11544c718abb4fcf8",
        ]
        assert rows[0]["bytecode_hash"] is not None
        assert rows[1]["bytecode_hash"] is None

    def test_nothing_to_do(self):
        engine = FakeEngine([])

        assert asyncio.run(make_reconciler(engine).backfill_contracts()) == 0
        assert engine.writes(INSERT_CONTRACT) == []


class TestBackfillTokens:
    def test_inserts_with_best_effort_metadata(self):
        fetcher = AsyncMock()
        fetcher.fetch.side_effect = [
            {"name": "Token", "symbol": "TKN", "decimals": 18},
            RuntimeError("rpc down"),
        ]
        engine = FakeEngine(
            [
                {"token_address": TOKEN_ADDRESS, "first_tx": "tx-1", "first_height": 1},
                {"token_address": "0x2222222222222222222222222222222222222222", "first_tx": "tx-2", "first_height": 2},
            ]
        )

        count = asyncio.run(make_reconciler(engine, fetcher=fetcher).backfill_tokens())

        assert count == 2
        [rows] = engine.writes_matching("ON CONFLICT (address) DO UPDATE")
        assert (rows[0]["name"], rows[0]["symbol"], rows[0]["decimals"]) == ("Token", "TKN", 18)
        assert (rows[1]["name"], rows[1]["symbol"], rows[1]["decimals"]) == (None, None, None)

    def test_conflict_only_fills_nulls(self):
        engine = FakeEngine([{"token_address": TOKEN_ADDRESS, "first_tx": "tx-1", "first_height": 1}])

        asyncio.run(make_reconciler(engine).backfill_tokens())

        [upsert] = [
            stmt.text for stmt, _ in engine.executed if isinstance(stmt, TextClause) and "DO UPDATE" in stmt.text
        ]
        assert "name = COALESCE(api.evm_tokens.name, EXCLUDED.name)" in upsert
        assert "decimals = COALESCE(api.evm_tokens.decimals, EXCLUDED.decimals)" in upsert

    def test_filters_on_transfer_topic(self):
        engine = FakeEngine([])

        asyncio.run(make_reconciler(engine).backfill_tokens())

        assert engine.executed[0][1] == {"transfer_topic": TRANSFER_TOPIC}


class TestBackfillTokenTransfers:
    def test_inserts_transfers_and_parent_tokens(self):
        topics = [TRANSFER_TOPIC, address_word(ALICE), address_word(BOB)]
        engine = FakeEngine(
            [
                {"tx_id": "tx-1", "log_index": 0, "address": TOKEN_ADDRESS, "topics": topics, "data": "0x01", "height": 1},
                {"tx_id": "tx-1", "log_index": 1, "address": TOKEN_ADDRESS, "topics": topics, "data": None, "height": 1},
            ]
        )

        count = asyncio.run(make_reconciler(engine, transfer_limit=50).backfill_token_transfers())

        assert count == 2
        assert engine.executed[0][1]["limit"] == 50
        [tokens] = engine.writes(INSERT_TOKEN)
        assert [t["address"] for t in tokens] == [TOKEN_ADDRESS]
        [transfers] = engine.writes(INSERT_TOKEN_TRANSFER)
        assert [t["value"] for t in transfers] == ["0x01", "0x"]


class TestBackfillTokenMetadata:
    def test_skipped_without_rpc(self):
        engine = FakeEngine()

        assert asyncio.run(make_reconciler(engine).backfill_token_metadata()) == 0
        assert engine.executed == []

    def test_fills_only_fetched_fields(self):
        fetcher = AsyncMock()
        fetcher.fetch.side_effect = [
            {"name": None, "symbol": "TKN", "decimals": None},
            {"name": None, "symbol": None, "decimals": None},
        ]
        engine = FakeEngine([{"address": TOKEN_ADDRESS}, {"address": "0x2222222222222222222222222222222222222222"}])

        count = asyncio.run(make_reconciler(engine, fetcher=fetcher).backfill_token_metadata())

        assert count == 1
        [rows] = engine.writes_matching("UPDATE api.evm_tokens")
        assert rows == [{"address": TOKEN_ADDRESS, "name": None, "symbol": "TKN", "decimals": None}]


class TestReconcilerArguments:
    @pytest.mark.parametrize("kwargs", [{"batch_size": 0}, {"transfer_limit": 0}])
    def test_rejects_non_positive(self, kwargs):
        with pytest.raises(ValueError):
            make_reconciler(FakeEngine(), **kwargs)


class TestRunBackfill:
    def test_runs_phases_in_dependency_order(self):
        calls = []
        reconciler = AsyncMock()
        for phase, count in [
            ("backfill_logs", 5),
            ("backfill_contracts", 1),
            ("backfill_tokens", 2),
            ("backfill_token_transfers", 3),
            ("backfill_token_metadata", 0),
        ]:
            getattr(reconciler, phase).side_effect = lambda phase=phase, count=count: calls.append(phase) or count

        counts = asyncio.run(run_backfill(reconciler=reconciler))

        assert calls == [
            "backfill_logs",
            "backfill_contracts",
            "backfill_tokens",
            "backfill_token_transfers",
            "backfill_token_metadata",
        ]
        assert counts == {"logs": 5, "contracts": 1, "tokens": 2, "token_transfers": 3, "token_metadata": 0}
