from __future__ import annotations

from sqlalchemy import BigInteger, Index, PrimaryKeyConstraint, Text
from sqlalchemy.orm import Mapped, mapped_column

from evm_decoder.app.infrastructure.db.db_base import BaseDB


class EvmContractsDB(BaseDB):
    """Contracts deployed by successful creation transactions (CREATE address)."""

    __tablename__ = "evm_contracts"
    __table_args__ = (
        PrimaryKeyConstraint("address"),
        Index("ix_evm_contracts_creation_tx", "creation_tx"),
        Index("ix_evm_contracts_creator", "creator"),
        {"schema": "api"},
    )

    address: Mapped[str] = mapped_column(Text, nullable=False)
    creator: Mapped[str] = mapped_column(Text, nullable=False)
    creation_tx: Mapped[str] = mapped_column(Text, nullable=False)
    creation_height: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    # keccak256 of the init code
    bytecode_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
