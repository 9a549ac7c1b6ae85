from __future__ import annotations

from sqlalchemy import ForeignKeyConstraint, Index, Integer, PrimaryKeyConstraint, Text
from sqlalchemy.orm import Mapped, mapped_column

from evm_decoder.app.infrastructure.db.db_base import BaseDB


class EvmTokenTransfersDB(BaseDB):
    """
    Token transfers parsed from Transfer(address,address,uint256) logs.

    One row per qualifying log, sharing the log's (tx_id, log_index) key.
    value is the raw hex log data; unit/decimals interpretation is left to
    readers that join api.evm_tokens.
    """

    __tablename__ = "evm_token_transfers"
    __table_args__ = (
        PrimaryKeyConstraint("tx_id", "log_index"),
        ForeignKeyConstraint(
            ["tx_id", "log_index"],
            ["api.evm_logs.tx_id", "api.evm_logs.log_index"],
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(["token_address"], ["api.evm_tokens.address"]),
        Index("ix_evm_token_transfers_from", "from_address"),
        Index("ix_evm_token_transfers_to", "to_address"),
        Index("ix_evm_token_transfers_token", "token_address"),
        {"schema": "api"},
    )

    tx_id: Mapped[str] = mapped_column(Text, nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    token_address: Mapped[str] = mapped_column(Text, nullable=False)
    from_address: Mapped[str] = mapped_column(Text, nullable=False)
    to_address: Mapped[str] = mapped_column(Text, nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
