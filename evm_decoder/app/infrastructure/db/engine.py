from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from evm_decoder.app.config import get_settings


def create_app_async_engine(*, echo: bool = False) -> AsyncEngine:
    """
    Factory for AsyncEngine used by the decoder daemon / backfill tasks.

    Centralizing engine creation keeps connection handling consistent
    across tasks and makes it easier to tweak pool settings in one place.
    """
    return create_async_engine(
        get_settings().database_url,  # postgresql+asyncpg://...
        echo=echo,
        pool_pre_ping=True,
        pool_size=10,
        pool_recycle=1800,
    )
