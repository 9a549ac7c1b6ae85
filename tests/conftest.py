"""
Shared fixtures for the decoder test-suite.

- signed transactions are produced with eth_account (real signatures, real
  hashes), base64 encoded the way the ledger stores them,
- execution responses are built with the runtime protobuf schema,
- InMemoryDecodeStore stands in for PostgreSQL: insert-or-ignore on every
  natural key and snapshot rollback when the unit of work raises.
"""

from __future__ import annotations

import base64
import copy
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable

import pytest
from eth_account import Account

from evm_decoder.app.domain.models import (
    ContractDraft,
    DecodedLog,
    DecodedTransaction,
    DecodeOutcome,
    OutcomeRejectedError,
    PendingWorkItem,
    TokenDraft,
    TokenTransferDraft,
)
from evm_decoder.app.infrastructure.decoders.erc20.transfer_classifier import TRANSFER_TOPIC
from evm_decoder.app.infrastructure.decoders.evm.execution_result_decoder import (
    EvmResponseSchema,
    build_evm_response_schema,
)

# eth_account documentation key; never holds funds
PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
CHAIN_ID = 9001

TOKEN_ADDRESS = "0x1111111111111111111111111111111111111111"
ALICE = "0x000000000000000000000000000000000000a11c"
BOB = "0x0000000000000000000000000000000000000b0b"


# -----------------------------------------------------------------------------
# Signed transactions
# -----------------------------------------------------------------------------
def sign(tx: dict) -> bytes:
    return bytes(Account.sign_transaction(tx, PRIVATE_KEY).raw_transaction)


def to_base64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def address_word(address: str) -> str:
    return "0x" + address[2:].lower().rjust(64, "0")


def transfer_calldata(to: str, amount: int) -> str:
    return "0xa9059cbb" + address_word(to)[2:] + hex(amount)[2:].rjust(64, "0")


@pytest.fixture
def account():
    return Account.from_key(PRIVATE_KEY)


@pytest.fixture
def legacy_tx() -> dict:
    return {
        "nonce": 7,
        "gasPrice": 2_000_000_000,
        "gas": 21_000,
        "to": "0x3535353535353535353535353535353535353535",
        "value": 10**18,
        "data": b"",
        "chainId": CHAIN_ID,
    }


@pytest.fixture
def eip1559_transfer_tx() -> dict:
    return {
        "type": 2,
        "chainId": CHAIN_ID,
        "nonce": 3,
        "maxFeePerGas": 3_000_000_000,
        "maxPriorityFeePerGas": 1_000_000_000,
        "gas": 60_000,
        "to": "0x1111111111111111111111111111111111111111",
        "value": 0,
        "data": transfer_calldata(BOB, 500),
        "accessList": [],
    }


@pytest.fixture
def contract_creation_tx() -> dict:
    return {
        "nonce": 0,
        "gasPrice": 1_000_000_000,
        "gas": 500_000,
        "value": 0,
        "data": "0x6080604052348015600f57600080fd5b50",
        "chainId": CHAIN_ID,
    }


# -----------------------------------------------------------------------------
# Execution responses
# -----------------------------------------------------------------------------
@pytest.fixture(scope="session")
def schema() -> EvmResponseSchema:
    return build_evm_response_schema()


def build_response_hex(
    schema: EvmResponseSchema,
    *,
    logs: Iterable[dict] = (),
    gas_used: int = 21_000,
    vm_error: str = "",
    type_url: str = "/cosmos.evm.vm.v1.MsgEthereumTxResponse",
) -> str:
    response = schema.msg_ethereum_tx_response(gas_used=gas_used, vm_error=vm_error)
    for entry in logs:
        log = response.logs.add()
        log.address = entry["address"]
        log.topics.extend(entry["topics"])
        log.data = entry.get("data", b"")
        log.index = entry.get("index", 0)

    envelope = schema.tx_msg_data()
    any_msg = envelope.msg_responses.add()
    any_msg.type_url = type_url
    any_msg.value = response.SerializeToString()
    return envelope.SerializeToString().hex()


def transfer_log(
    *,
    address: str = TOKEN_ADDRESS,
    sender: str = ALICE,
    recipient: str = BOB,
    amount: int = 500,
    index: int = 0,
) -> dict:
    return {
        "address": address,
        "topics": [TRANSFER_TOPIC, address_word(sender), address_word(recipient)],
        "data": amount.to_bytes(32, "big"),
        "index": index,
    }


# -----------------------------------------------------------------------------
# In-memory DecodeStore
# -----------------------------------------------------------------------------
class InMemoryDecodeSession:
    def __init__(self, store: InMemoryDecodeStore) -> None:
        self._store = store

    async def fetch_pending(self, *, limit: int) -> list[PendingWorkItem]:
        items = [
            item
            for tx_id, item in self._store.pending.items()
            if tx_id not in self._store.transactions
        ]
        return items[:limit]

    async def fetch_pending_item(self, *, tx_id: str) -> PendingWorkItem | None:
        return self._store.pending.get(tx_id)

    async def fetch_decoded_hash(self, *, tx_id: str) -> str | None:
        tx = self._store.transactions.get(tx_id)
        return tx.hash if tx is not None else None

    async def fetch_execution_response(self, *, tx_id: str) -> str | None:
        return self._store.responses.get(tx_id)

    async def save(self, outcome: DecodeOutcome) -> None:
        store = self._store
        tx = outcome.transaction
        if tx.tx_id in store.fail_on_save:
            raise RuntimeError(f"simulated write failure for {tx.tx_id}")
        if tx.tx_id in store.reject_on_save and not outcome.is_placeholder:
            raise OutcomeRejectedError(f"{tx.tx_id}: value out of range")

        store.transactions.setdefault(tx.tx_id, tx)
        for log in outcome.logs:
            store.logs.setdefault((log.tx_id, log.log_index), log)
        for token in outcome.tokens:
            store.tokens.setdefault(token.address, token)
        for transfer in outcome.transfers:
            store.transfers.setdefault((transfer.tx_id, transfer.log_index), transfer)
        if outcome.contract is not None:
            store.contracts.setdefault(outcome.contract.address, outcome.contract)

        store.pending.pop(tx.tx_id, None)


class InMemoryDecodeStore:
    def __init__(self) -> None:
        self.pending: dict[str, PendingWorkItem] = {}
        self.responses: dict[str, str] = {}
        self.transactions: dict[str, DecodedTransaction] = {}
        self.logs: dict[tuple[str, int], DecodedLog] = {}
        self.tokens: dict[str, TokenDraft] = {}
        self.transfers: dict[tuple[str, int], TokenTransferDraft] = {}
        self.contracts: dict[str, ContractDraft] = {}
        self.fail_on_save: set[str] = set()
        self.reject_on_save: set[str] = set()
        self.commits = 0
        self.rollbacks = 0

    def add_pending(self, item: PendingWorkItem, *, response: str | None = None) -> None:
        self.pending[item.tx_id] = item
        if response is not None:
            self.responses[item.tx_id] = response

    def _tables(self) -> tuple[str, ...]:
        return ("pending", "transactions", "logs", "tokens", "transfers", "contracts")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryDecodeSession]:
        snapshot = {name: copy.copy(getattr(self, name)) for name in self._tables()}
        try:
            yield InMemoryDecodeSession(self)
        except BaseException:
            for name, value in snapshot.items():
                setattr(self, name, value)
            self.rollbacks += 1
            raise
        self.commits += 1


@pytest.fixture
def store() -> InMemoryDecodeStore:
    return InMemoryDecodeStore()
