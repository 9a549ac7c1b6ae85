from __future__ import annotations

import rlp
from eth_utils import encode_hex, keccak, to_canonical_address

from evm_decoder.app.domain.models import ContractDraft, DecodedTransaction, TxStatus


def derive_contract_address(creator: str, nonce: int) -> str:
    """
    CREATE address: keccak256(rlp([sender, nonce]))[12:].

    Returned lower-case, 0x-prefixed (the storage format of api.evm_contracts).
    """
    if nonce < 0:
        raise ValueError("nonce must be non-negative")
    encoded = rlp.encode([to_canonical_address(creator), nonce])
    return encode_hex(keccak(encoded)[12:])


def bytecode_hash(data: str | None) -> str | None:
    if not data or data in ("0x", "0X"):
        return None
    return encode_hex(keccak(hexstr=data))


def resolve_contract(tx: DecodedTransaction, *, height: int | None) -> ContractDraft | None:
    """Contract row for a successful creation transaction, None otherwise."""
    if not tx.is_contract_creation or tx.status != TxStatus.SUCCESS:
        return None
    if not tx.from_address:
        return None

    return ContractDraft(
        address=derive_contract_address(tx.from_address, tx.nonce),
        creator=tx.from_address.lower(),
        creation_tx=tx.tx_id,
        creation_height=height,
        bytecode_hash=bytecode_hash(tx.data),
    )
