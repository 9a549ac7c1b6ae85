from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Final, Sequence

import rlp
from eth_account import Account
from eth_utils import big_endian_to_int, encode_hex, keccak, to_checksum_address

from evm_decoder.app.domain.models import MAX_BIGINT, DecodedTransaction, DecodeFailure, TxStatus

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Envelope layouts (signature fields v|y_parity, r, s always follow)
# -----------------------------------------------------------------------------
_LEGACY_FIELDS: Final[tuple[str, ...]] = (
    "nonce",
    "gas_price",
    "gas_limit",
    "to",
    "value",
    "data",
)

_TYPED_FIELDS: Final[dict[int, tuple[str, ...]]] = {
    # EIP-2930 access list
    1: ("chain_id", "nonce", "gas_price", "gas_limit", "to", "value", "data", "access_list"),
    # EIP-1559 dynamic fee
    2: (
        "chain_id",
        "nonce",
        "max_priority_fee_per_gas",
        "max_fee_per_gas",
        "gas_limit",
        "to",
        "value",
        "data",
        "access_list",
    ),
    # EIP-4844 blob (canonical form, without the network wrapper)
    3: (
        "chain_id",
        "nonce",
        "max_priority_fee_per_gas",
        "max_fee_per_gas",
        "gas_limit",
        "to",
        "value",
        "data",
        "access_list",
        "max_fee_per_blob_gas",
        "blob_versioned_hashes",
    ),
    # EIP-7702 set code
    4: (
        "chain_id",
        "nonce",
        "max_priority_fee_per_gas",
        "max_fee_per_gas",
        "gas_limit",
        "to",
        "value",
        "data",
        "access_list",
        "authorization_list",
    ),
}

_SIGNATURE_FIELD_COUNT: Final[int] = 3
# Stored as BIGINT; fee and value fields are NUMERIC and unbounded
_BIGINT_FIELDS: Final[tuple[str, ...]] = ("nonce", "gas_limit", "chain_id")
_INT_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "chain_id",
        "nonce",
        "gas_price",
        "gas_limit",
        "value",
        "max_fee_per_gas",
        "max_priority_fee_per_gas",
    }
)

# -----------------------------------------------------------------------------
# Well-known function selectors, resolved without any network call
# -----------------------------------------------------------------------------
_WELL_KNOWN_SIGNATURES: Final[tuple[str, ...]] = (
    "transfer(address,uint256)",
    "transferFrom(address,address,uint256)",
    "approve(address,uint256)",
    "safeTransferFrom(address,address,uint256)",
    "balanceOf(address)",
    "allowance(address,address)",
    "totalSupply()",
    "deposit()",
    "withdraw(uint256)",
    "multicall(bytes[])",
)


def function_selector(signature: str) -> str:
    """'transfer(address,uint256)' -> '0xa9059cbb'"""
    return encode_hex(keccak(text=signature)[:4])


def function_name(signature: str) -> str:
    return signature.split("(", 1)[0]


KNOWN_SELECTORS: Final[dict[str, str]] = {
    function_selector(sig): sig for sig in _WELL_KNOWN_SIGNATURES
}


class MalformedTransaction(ValueError):
    """Raised internally while parsing; never escapes decode_transaction()."""


def decode_transaction(
    raw_bytes: str | bytes,
    tx_id: str,
    known_gas_used: int | None = None,
    *,
    known_hash: str | None = None,
) -> DecodedTransaction | DecodeFailure:
    """
    Decode a signed Ethereum transaction envelope.

    raw_bytes is the ledger's encoding of the envelope: base64 text
    (canonical), 0x-prefixed hex text, or raw bytes. Legacy and typed
    (EIP-2718) envelopes are supported.

    Never raises: anything that cannot be parsed is returned as DecodeFailure
    so the caller can persist a placeholder.
    """
    try:
        envelope = _envelope_bytes(raw_bytes)
        tx_type, fields = _parse_envelope(envelope)
        _check_storable(fields)
        sender = Account.recover_transaction(envelope)
    except Exception as exc:  # parsing errors come from several libraries
        logger.warning("Failed to decode transaction %s: %s", tx_id, exc)
        return DecodeFailure(tx_id=tx_id, reason=str(exc) or exc.__class__.__name__)

    tx_hash = encode_hex(keccak(envelope))
    if known_hash and known_hash.lower() != tx_hash:
        logger.warning(
            "Hash mismatch for %s: ledger reported %s, envelope hashes to %s",
            tx_id,
            known_hash,
            tx_hash,
        )

    data = encode_hex(fields["data"])
    selector = data[:10] if len(fields["data"]) >= 4 else None
    signature = KNOWN_SELECTORS.get(selector) if selector else None

    return DecodedTransaction(
        tx_id=tx_id,
        hash=tx_hash,
        from_address=to_checksum_address(sender),
        to_address=fields["to"],
        nonce=fields["nonce"],
        gas_limit=fields["gas_limit"],
        gas_price=fields.get("gas_price", 0),
        max_fee_per_gas=fields.get("max_fee_per_gas"),
        max_priority_fee_per_gas=fields.get("max_priority_fee_per_gas"),
        value=fields["value"],
        data=data,
        type=tx_type,
        chain_id=fields.get("chain_id"),
        gas_used=known_gas_used,
        status=TxStatus.SUCCESS,
        function_name=function_name(signature) if signature else None,
        function_signature=signature or selector,
    )


def _envelope_bytes(raw_bytes: str | bytes) -> bytes:
    if isinstance(raw_bytes, (bytes, bytearray, memoryview)):
        envelope = bytes(raw_bytes)
    elif isinstance(raw_bytes, str):
        text = raw_bytes.strip()
        try:
            if text[:2].lower() == "0x":
                envelope = bytes.fromhex(text[2:])
            else:
                envelope = base64.b64decode(text, validate=True)
        except (ValueError, binascii.Error) as exc:
            raise MalformedTransaction(f"raw bytes are neither base64 nor hex: {exc}") from exc
    else:
        raise MalformedTransaction(f"unsupported raw bytes type {type(raw_bytes).__name__}")

    if not envelope:
        raise MalformedTransaction("empty transaction envelope")
    return envelope


def _parse_envelope(envelope: bytes) -> tuple[int, dict[str, Any]]:
    first = envelope[0]

    # EIP-2718: a leading byte below 0x7f is the transaction type
    if first <= 0x7F:
        layout = _TYPED_FIELDS.get(first)
        if layout is None:
            raise MalformedTransaction(f"unsupported transaction type {first}")
        items = _rlp_list(envelope[1:])
        return first, _map_fields(items, layout)

    if first < 0xC0:
        raise MalformedTransaction("legacy envelope is not an RLP list")

    items = _rlp_list(envelope)
    fields = _map_fields(items, _LEGACY_FIELDS)
    v = big_endian_to_int(items[len(_LEGACY_FIELDS)])
    # EIP-155: v = chain_id * 2 + 35 | 36
    fields["chain_id"] = (v - 35) // 2 if v >= 35 else None
    return 0, fields


def _rlp_list(payload: bytes) -> list[Any]:
    decoded = rlp.decode(payload)
    if not isinstance(decoded, list):
        raise MalformedTransaction("transaction payload is not an RLP list")
    return decoded


def _map_fields(items: Sequence[Any], layout: Sequence[str]) -> dict[str, Any]:
    if len(items) != len(layout) + _SIGNATURE_FIELD_COUNT:
        raise MalformedTransaction(
            f"expected {len(layout) + _SIGNATURE_FIELD_COUNT} RLP items, got {len(items)}"
        )

    fields: dict[str, Any] = {}
    for name, item in zip(layout, items):
        if name in _INT_FIELDS:
            fields[name] = big_endian_to_int(_as_bytes(name, item))
        elif name == "to":
            fields[name] = _as_address(item)
        elif name == "data":
            fields[name] = _as_bytes(name, item)
        else:
            # access/authorization lists and blob hashes are not persisted
            fields[name] = item
    return fields


def _check_storable(fields: dict[str, Any]) -> None:
    for name in _BIGINT_FIELDS:
        value = fields.get(name)
        if value is not None and value > MAX_BIGINT:
            raise MalformedTransaction(f"field {name!r} out of range: {value}")


def _as_bytes(name: str, item: Any) -> bytes:
    if not isinstance(item, bytes):
        raise MalformedTransaction(f"field {name!r} must be a byte string")
    return item


def _as_address(item: Any) -> str | None:
    raw = _as_bytes("to", item)
    if not raw:
        return None
    if len(raw) != 20:
        raise MalformedTransaction(f"'to' must be 20 bytes, got {len(raw)}")
    return to_checksum_address(raw)
