from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Final

# Upper bounds of the BIGINT / INTEGER columns decoded values are stored in
MAX_BIGINT: Final[int] = 2**63 - 1
MAX_INTEGER: Final[int] = 2**31 - 1


class OutcomeRejectedError(Exception):
    """The database refused a decoded row; the item cannot be stored as decoded."""


class TxStatus(IntEnum):
    """Value of api.evm_transactions.status."""

    DECODE_FAILED = -1
    FAILURE = 0
    SUCCESS = 1


@dataclass(frozen=True)
class PendingWorkItem:
    tx_id: str
    raw_bytes: str
    height: int
    gas_used: int | None = None
    known_hash: str | None = None


@dataclass(frozen=True)
class DecodedTransaction:
    """
    Structured view of one signed Ethereum transaction.

    Addresses are checksummed, byte fields are 0x-prefixed hex and numeric
    fields are plain ints (wei / gas units).
    """

    tx_id: str
    hash: str
    from_address: str
    to_address: str | None
    nonce: int
    gas_limit: int
    gas_price: int
    max_fee_per_gas: int | None
    max_priority_fee_per_gas: int | None
    value: int
    data: str | None
    type: int
    chain_id: int | None
    gas_used: int | None
    status: TxStatus = TxStatus.SUCCESS
    function_name: str | None = None
    function_signature: str | None = None

    @classmethod
    def placeholder(cls, tx_id: str) -> DecodedTransaction:
        """Terminal row for a payload that cannot be decoded; stops retries."""
        return cls(
            tx_id=tx_id,
            hash=f"decode_failed_{tx_id[:16]}",
            from_address="",
            to_address=None,
            nonce=0,
            gas_limit=0,
            gas_price=0,
            max_fee_per_gas=None,
            max_priority_fee_per_gas=None,
            value=0,
            data=None,
            type=0,
            chain_id=None,
            gas_used=None,
            status=TxStatus.DECODE_FAILED,
        )

    @property
    def is_contract_creation(self) -> bool:
        return self.to_address is None

    @property
    def selector(self) -> str | None:
        # "0x" + 8 hex chars
        if self.data is None or len(self.data) < 10:
            return None
        return self.data[:10].lower()


@dataclass(frozen=True)
class DecodeFailure:
    tx_id: str
    reason: str


@dataclass(frozen=True)
class DecodedLog:
    tx_id: str
    log_index: int
    address: str
    topics: tuple[str, ...]
    data: str

    @property
    def topic0(self) -> str | None:
        return self.topics[0] if self.topics else None


@dataclass(frozen=True)
class ExecutionResult:
    """Logs, gas and VM error recovered from a MsgEthereumTxResponse."""

    logs: tuple[DecodedLog, ...]
    gas_used: int
    vm_error: str | None = None

    def with_tx_id(self, tx_id: str) -> ExecutionResult:
        return ExecutionResult(
            logs=tuple(
                DecodedLog(
                    tx_id=tx_id,
                    log_index=log.log_index,
                    address=log.address,
                    topics=log.topics,
                    data=log.data,
                )
                for log in self.logs
            ),
            gas_used=self.gas_used,
            vm_error=self.vm_error,
        )


@dataclass(frozen=True)
class TokenDraft:
    address: str
    first_seen_tx: str | None
    first_seen_height: int | None
    type: str = "ERC20"
    name: str | None = None
    symbol: str | None = None
    decimals: int | None = None


@dataclass(frozen=True)
class TokenTransferDraft:
    tx_id: str
    log_index: int
    token_address: str
    from_address: str
    to_address: str
    value: str


@dataclass(frozen=True)
class ContractDraft:
    address: str
    creator: str
    creation_tx: str
    creation_height: int | None
    bytecode_hash: str | None


@dataclass(frozen=True)
class DecodeOutcome:
    """Everything derived from one pending item; persisted all-or-nothing."""

    transaction: DecodedTransaction
    logs: tuple[DecodedLog, ...] = ()
    tokens: tuple[TokenDraft, ...] = ()
    transfers: tuple[TokenTransferDraft, ...] = ()
    contract: ContractDraft | None = None

    @property
    def is_placeholder(self) -> bool:
        return self.transaction.status == TxStatus.DECODE_FAILED


@dataclass(frozen=True)
class PriorityDecodeResult:
    success: bool
    message: str
    data: dict[str, Any] = field(default_factory=dict)
