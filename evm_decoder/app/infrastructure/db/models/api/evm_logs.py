from __future__ import annotations

from sqlalchemy import ForeignKeyConstraint, Index, Integer, PrimaryKeyConstraint, Text
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from evm_decoder.app.infrastructure.db.db_base import BaseDB


class EvmLogsDB(BaseDB):
    """
    Execution logs emitted by a decoded transaction.

    Identified by (tx_id, log_index). topics keeps the emitted order, so
    topics[1] (1-based in SQL) is always the event signature hash.
    """

    __tablename__ = "evm_logs"
    __table_args__ = (
        PrimaryKeyConstraint("tx_id", "log_index"),
        ForeignKeyConstraint(
            ["tx_id"],
            ["api.evm_transactions.tx_id"],
            ondelete="CASCADE",
        ),
        Index("ix_evm_logs_address", "address"),
        {"schema": "api"},
    )

    tx_id: Mapped[str] = mapped_column(Text, nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    topics: Mapped[list[str]] = mapped_column(ARRAY(Text), nullable=False)
    data: Mapped[str | None] = mapped_column(Text, nullable=True)
