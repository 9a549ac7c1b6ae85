from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine

from evm_decoder.app.application.services.decode_pipeline import DecodePipeline
from evm_decoder.app.config import get_settings
from evm_decoder.app.domain.ports.out import DecodeStore, SignatureLookup
from evm_decoder.app.infrastructure.adapters.decode_store import SqlAlchemyDecodeStore
from evm_decoder.app.infrastructure.decoders.erc20.transfer_classifier import TransferLogClassifier
from evm_decoder.app.infrastructure.decoders.evm.execution_result_decoder import (
    ProtobufExecutionResultDecoder,
)
from evm_decoder.app.infrastructure.fetchers.four_byte_signature_fetcher import (
    HttpxFourByteSignatureLookup,
)
from evm_decoder.app.infrastructure.fetchers.signature_cache import SignatureCache


@dataclass(frozen=True)
class DecoderWiring:
    """Store + pipeline pair shared by the priority and batch paths."""

    store: DecodeStore
    pipeline: DecodePipeline
    http_client: httpx.AsyncClient | None = None

    async def aclose(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()


DecoderFactory = Callable[[AsyncEngine], DecoderWiring]

_DECODER_REGISTRY: Dict[str, DecoderFactory] = {}


def _make_sqlalchemy_decoder(engine: AsyncEngine) -> DecoderWiring:
    """
    Wire dependencies for SQLAlchemy backend:
    - protobuf execution-result decoder (runtime-built schema)
    - ERC-20 Transfer log classifier
    - optional 4byte signature lookup (httpx client + bounded LRU cache)
    - SQLAlchemy decode store (one engine.begin() per unit of work)
    """
    settings = get_settings()

    http_client: httpx.AsyncClient | None = None
    signature_lookup: SignatureLookup | None = None
    if settings.signature_lookup_enabled:
        http_client = httpx.AsyncClient(timeout=settings.signature_lookup_timeout_s)
        signature_lookup = HttpxFourByteSignatureLookup(
            client=http_client,
            cache=SignatureCache(capacity=settings.signature_cache_size),
            base_url=settings.signature_lookup_url,
        )

    pipeline = DecodePipeline(
        response_decoder=ProtobufExecutionResultDecoder(),
        classifier=TransferLogClassifier(),
        signature_lookup=signature_lookup,
    )

    return DecoderWiring(
        store=SqlAlchemyDecodeStore(engine=engine),
        pipeline=pipeline,
        http_client=http_client,
    )


# Register backends
_DECODER_REGISTRY["sqlalchemy"] = _make_sqlalchemy_decoder


def decoder_factory(
    *,
    backend: str,
    engine: AsyncEngine,
) -> DecoderWiring:
    """
    Create the decode store and pipeline for the given backend.

    The caller owns the returned wiring and must `await wiring.aclose()`.
    """
    try:
        factory = _DECODER_REGISTRY[backend]
    except KeyError:
        raise ValueError(f"Unsupported decoder backend: {backend!r}")

    return factory(engine)
