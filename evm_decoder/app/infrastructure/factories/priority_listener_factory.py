from __future__ import annotations

import asyncpg

from evm_decoder.app.application.services.priority_decode import decode_single_transaction
from evm_decoder.app.config import get_settings
from evm_decoder.app.domain.models import PriorityDecodeResult
from evm_decoder.app.domain.ports.out import NotificationConnection, NotificationConnector
from evm_decoder.app.infrastructure.adapters.priority_listener import PriorityListener
from evm_decoder.app.infrastructure.factories.decoder_factory import DecoderWiring


def asyncpg_connector(dsn: str) -> NotificationConnector:
    """Dedicated (non-pooled) asyncpg connection: LISTEN needs a long-lived session."""

    async def connect() -> NotificationConnection:
        return await asyncpg.connect(dsn)

    return connect


def priority_listener_factory(*, wiring: DecoderWiring) -> PriorityListener:
    settings = get_settings()

    async def handle(tx_id: str) -> PriorityDecodeResult:
        return await decode_single_transaction(
            store=wiring.store,
            pipeline=wiring.pipeline,
            tx_id=tx_id,
        )

    return PriorityListener(
        connector=asyncpg_connector(settings.listener_dsn),
        handler=handle,
        channel=settings.notify_channel,
        reconnect_delay_s=settings.reconnect_delay_s,
    )
