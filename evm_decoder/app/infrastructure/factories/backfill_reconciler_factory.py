from __future__ import annotations

import logging
from typing import Callable, Dict

from sqlalchemy.ext.asyncio import AsyncEngine
from web3 import AsyncHTTPProvider, AsyncWeb3

from evm_decoder.app.config import get_settings
from evm_decoder.app.domain.ports.out import BackfillReconciler, Erc20TokenMetadataFetcher
from evm_decoder.app.infrastructure.adapters.backfill_reconciler import SqlAlchemyBackfillReconciler
from evm_decoder.app.infrastructure.decoders.erc20.transfer_classifier import TransferLogClassifier
from evm_decoder.app.infrastructure.decoders.evm.execution_result_decoder import (
    ProtobufExecutionResultDecoder,
)
from evm_decoder.app.infrastructure.fetchers.erc20_tokens_fetcher import (
    Web3Erc20TokenMetadataFetcher,
)

logger = logging.getLogger(__name__)

BackfillReconcilerFactory = Callable[[AsyncEngine], BackfillReconciler]

_BACKFILL_REGISTRY: Dict[str, BackfillReconcilerFactory] = {}


def _make_sqlalchemy_reconciler(engine: AsyncEngine) -> BackfillReconciler:
    """
    Wire dependencies for SQLAlchemy backend:
    - AsyncWeb3 provider + ERC-20 metadata fetcher, only when EVM_RPC_URL is set
    - protobuf execution-result decoder and Transfer classifier for the logs phase
    """
    settings = get_settings()

    fetcher: Erc20TokenMetadataFetcher | None = None
    if settings.evm_rpc_url:
        w3 = AsyncWeb3(
            AsyncHTTPProvider(
                settings.evm_rpc_url,
                request_kwargs={"timeout": 30},
            )
        )
        fetcher = Web3Erc20TokenMetadataFetcher(w3=w3)
    else:
        logger.info("EVM_RPC_URL not set - token metadata will stay NULL")

    return SqlAlchemyBackfillReconciler(
        engine,
        response_decoder=ProtobufExecutionResultDecoder(),
        classifier=TransferLogClassifier(),
        metadata_fetcher=fetcher,
        batch_size=settings.batch_size,
        transfer_limit=settings.backfill_transfer_limit,
    )


# Register backends
_BACKFILL_REGISTRY["sqlalchemy"] = _make_sqlalchemy_reconciler


def backfill_reconciler_factory(
    *,
    backend: str,
    engine: AsyncEngine,
) -> BackfillReconciler:
    try:
        factory = _BACKFILL_REGISTRY[backend]
    except KeyError:
        raise ValueError(f"Unsupported backfill backend: {backend!r}")

    return factory(engine)
