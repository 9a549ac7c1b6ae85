from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    DateTime,
    Index,
    Numeric,
    PrimaryKeyConstraint,
    SmallInteger,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from evm_decoder.app.infrastructure.db.db_base import BaseDB


class EvmTransactionsDB(BaseDB):
    """
    Decoded Ethereum transactions.

    Exactly one row per Cosmos tx_id, ever: rows are insert-only and written
    with ON CONFLICT (tx_id) DO NOTHING. A row with status = -1 is a
    placeholder for a payload that could not be decoded; it stops the item
    from being retried.
    """

    __tablename__ = "evm_transactions"
    __table_args__ = (
        PrimaryKeyConstraint("tx_id"),
        Index("ix_evm_transactions_hash", "hash"),
        Index("ix_evm_transactions_from", "from"),
        Index("ix_evm_transactions_to", "to"),
        {"schema": "api"},
    )

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------
    tx_id: Mapped[str] = mapped_column(Text, nullable=False)
    hash: Mapped[str] = mapped_column(Text, nullable=False)

    # -------------------------------------------------------------------------
    # Envelope fields
    # -------------------------------------------------------------------------
    from_address: Mapped[str] = mapped_column("from", Text, nullable=False)
    # NULL for contract creations
    to_address: Mapped[str | None] = mapped_column("to", Text, nullable=True)
    nonce: Mapped[int] = mapped_column(BigInteger, nullable=False)
    gas_limit: Mapped[int] = mapped_column(BigInteger, nullable=False)
    gas_price: Mapped[Numeric] = mapped_column(Numeric, nullable=False)
    max_fee_per_gas: Mapped[Numeric | None] = mapped_column(Numeric, nullable=True)
    max_priority_fee_per_gas: Mapped[Numeric | None] = mapped_column(Numeric, nullable=True)
    value: Mapped[Numeric] = mapped_column(Numeric, nullable=False)
    data: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[int] = mapped_column(SmallInteger, nullable=False, server_default="0")
    chain_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # -------------------------------------------------------------------------
    # Execution context
    # -------------------------------------------------------------------------
    gas_used: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    # 1 = success, 0 = failure (vm error), -1 = decode failed
    status: Mapped[int] = mapped_column(SmallInteger, nullable=False, server_default="1")
    function_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    function_signature: Mapped[str | None] = mapped_column(Text, nullable=True)

    decoded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
