
from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Index,
    Integer,
    PrimaryKeyConstraint,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from evm_decoder.app.infrastructure.db.db_base import BaseDB


class EvmTokensDB(BaseDB):
    """
    Token registry (ERC-20).

    One row = one token contract address, discovered lazily from Transfer
    logs. name/symbol/decimals start as NULL and are only ever filled in,
    never overwritten, by later enrichment.
    """

    __tablename__ = "evm_tokens"
    __table_args__ = (
        PrimaryKeyConstraint("address"),
        Index("ix_evm_tokens_symbol", "symbol"),
        {"schema": "api"},
    )

    address: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(Text, nullable=False)

    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    symbol: Mapped[str | None] = mapped_column(Text, nullable=True)
    decimals: Mapped[int | None] = mapped_column(Integer, nullable=True)

    first_seen_tx: Mapped[str | None] = mapped_column(Text, nullable=True)
    first_seen_height: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
