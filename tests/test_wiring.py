"""Tests for the backend factories and the task registry."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from evm_decoder.app.config import Settings
from evm_decoder.app.domain.models import PriorityDecodeResult
from evm_decoder.app.infrastructure.adapters.backfill_reconciler import SqlAlchemyBackfillReconciler
from evm_decoder.app.infrastructure.adapters.decode_store import SqlAlchemyDecodeStore
from evm_decoder.app.infrastructure.adapters.priority_listener import PriorityListener
from evm_decoder.app.infrastructure.factories import (
    backfill_reconciler_factory as backfill_module,
    decoder_factory as decoder_module,
    priority_listener_factory as listener_module,
)
from evm_decoder.app.infrastructure.fetchers.four_byte_signature_fetcher import (
    HttpxFourByteSignatureLookup,
)
from evm_decoder.app.interface.tasks import TASKS


def settings(**overrides) -> Settings:
    return Settings(_env_file=None, DATABASE_URL="postgresql://user:pw@db/chain", **overrides)


class TestDecoderFactory:
    def test_sqlalchemy_backend(self):
        with patch.object(decoder_module, "get_settings", return_value=settings()):
            wiring = decoder_module.decoder_factory(backend="sqlalchemy", engine=MagicMock())

        assert isinstance(wiring.store, SqlAlchemyDecodeStore)
        assert isinstance(wiring.pipeline._signature_lookup, HttpxFourByteSignatureLookup)
        assert wiring.http_client.timeout.read == 2.0
        asyncio.run(wiring.aclose())
        assert wiring.http_client.is_closed

    def test_signature_lookup_can_be_disabled(self):
        with patch.object(
            decoder_module,
            "get_settings",
            return_value=settings(SIGNATURE_LOOKUP_ENABLED=False),
        ):
            wiring = decoder_module.decoder_factory(backend="sqlalchemy", engine=MagicMock())

        assert wiring.http_client is None
        assert wiring.pipeline._signature_lookup is None

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            decoder_module.decoder_factory(backend="mongo", engine=MagicMock())


class TestBackfillFactory:
    def test_without_rpc(self):
        with patch.object(backfill_module, "get_settings", return_value=settings()):
            reconciler = backfill_module.backfill_reconciler_factory(backend="sqlalchemy", engine=MagicMock())

        assert isinstance(reconciler, SqlAlchemyBackfillReconciler)
        assert reconciler._metadata_fetcher is None

    def test_with_rpc(self):
        with patch.object(
            backfill_module,
            "get_settings",
            return_value=settings(EVM_RPC_URL="http://localhost:8545"),
        ):
            reconciler = backfill_module.backfill_reconciler_factory(backend="sqlalchemy", engine=MagicMock())

        assert reconciler._metadata_fetcher is not None

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            backfill_module.backfill_reconciler_factory(backend="mongo", engine=MagicMock())


class TestPriorityListenerFactory:
    def test_handler_runs_priority_decode(self):
        wiring = MagicMock()
        expected = PriorityDecodeResult(success=True, message="Transaction already decoded")
        decode = AsyncMock(return_value=expected)

        with patch.object(listener_module, "get_settings", return_value=settings(NOTIFY_CHANNEL="custom")), patch.object(
            listener_module, "decode_single_transaction", decode
        ):
            listener = listener_module.priority_listener_factory(wiring=wiring)
            result = asyncio.run(listener._handler("tx-9"))

        assert isinstance(listener, PriorityListener)
        assert listener.channel == "custom"
        assert result is expected
        decode.assert_awaited_once_with(store=wiring.store, pipeline=wiring.pipeline, tx_id="tx-9")

    def test_connector_uses_listener_dsn(self):
        connect = AsyncMock(return_value=MagicMock())

        with patch.object(listener_module.asyncpg, "connect", connect):
            asyncio.run(listener_module.asyncpg_connector("postgresql://db/chain")())

        connect.assert_awaited_once_with("postgresql://db/chain")


class TestTaskRegistry:
    def test_registered_tasks(self):
        assert set(TASKS) == {"serve_task", "drain_task", "listen_task", "decode_task", "backfill_task"}
