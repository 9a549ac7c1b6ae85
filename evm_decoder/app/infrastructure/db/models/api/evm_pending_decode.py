from __future__ import annotations

from sqlalchemy import BigInteger, Index, PrimaryKeyConstraint, Text
from sqlalchemy.orm import Mapped, mapped_column

from evm_decoder.app.infrastructure.db.db_base import BaseDB


class EvmPendingDecodeDB(BaseDB):
    """
    Work queue of Ethereum transactions waiting to be decoded.

    Rows are produced by the upstream ledger indexer (one row per Cosmos
    transaction carrying a MsgEthereumTx) and retired by the decoder in the
    same database transaction that inserts the matching api.evm_transactions
    row. Both the priority listener and the batch drain loop consume this
    table; claims use FOR UPDATE SKIP LOCKED so they rarely decode the same
    item twice.
    """

    __tablename__ = "evm_pending_decode"
    __table_args__ = (
        PrimaryKeyConstraint("tx_id"),
        Index("ix_evm_pending_decode_height", "height"),
        {"schema": "api"},
    )

    """Cosmos transaction id (hash), the unit of work."""
    tx_id: Mapped[str] = mapped_column(Text, nullable=False)

    """Signed Ethereum transaction envelope, base64 encoded."""
    raw_bytes: Mapped[str] = mapped_column(Text, nullable=False)

    """Ledger height of the Cosmos transaction."""
    height: Mapped[int] = mapped_column(BigInteger, nullable=False)

    """Gas used as reported by the ledger's ethereum_tx event, if any."""
    gas_used: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    """Ethereum tx hash as reported by the ledger's ethereum_tx event, if any."""
    known_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
