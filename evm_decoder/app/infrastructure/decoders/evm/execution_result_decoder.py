from __future__ import annotations

import binascii
import logging
from dataclasses import dataclass
from typing import Any, Final

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError, Message

from evm_decoder.app.domain.models import MAX_BIGINT, MAX_INTEGER, DecodedLog, ExecutionResult

logger = logging.getLogger(__name__)

_PACKAGE: Final[str] = "cosmos.evm.vm.v1"
_RESPONSE_TYPE_SUFFIX: Final[str] = "MsgEthereumTxResponse"

_F = descriptor_pb2.FieldDescriptorProto

# -----------------------------------------------------------------------------
# Message layouts (field name, number, type, repeated, message type name)
# Only the fields the decoder reads are declared; anything else is kept as
# unknown fields by protobuf and ignored.
# -----------------------------------------------------------------------------
_MESSAGES: Final[dict[str, list[tuple[str, int, int, bool, str | None]]]] = {
    "Any": [
        ("type_url", 1, _F.TYPE_STRING, False, None),
        ("value", 2, _F.TYPE_BYTES, False, None),
    ],
    "TxMsgData": [
        ("data", 1, _F.TYPE_BYTES, True, None),  # deprecated, pre-v0.46 SDKs
        ("msg_responses", 2, _F.TYPE_MESSAGE, True, "Any"),
    ],
    "Log": [
        ("address", 1, _F.TYPE_STRING, False, None),
        ("topics", 2, _F.TYPE_STRING, True, None),
        ("data", 3, _F.TYPE_BYTES, False, None),
        ("block_number", 4, _F.TYPE_UINT64, False, None),
        ("tx_hash", 5, _F.TYPE_STRING, False, None),
        ("tx_index", 6, _F.TYPE_UINT64, False, None),
        ("block_hash", 7, _F.TYPE_STRING, False, None),
        ("index", 8, _F.TYPE_UINT64, False, None),
        ("removed", 9, _F.TYPE_BOOL, False, None),
    ],
    "MsgEthereumTxResponse": [
        ("hash", 1, _F.TYPE_STRING, False, None),
        ("logs", 2, _F.TYPE_MESSAGE, True, "Log"),
        ("ret", 3, _F.TYPE_BYTES, False, None),
        ("vm_error", 4, _F.TYPE_STRING, False, None),
        ("gas_used", 5, _F.TYPE_UINT64, False, None),
    ],
}


@dataclass(frozen=True)
class EvmResponseSchema:
    """Message classes needed to unwrap a tx response into EVM logs."""

    tx_msg_data: type[Message]
    msg_ethereum_tx_response: type[Message]
    response_type_suffix: str = _RESPONSE_TYPE_SUFFIX


def build_evm_response_schema() -> EvmResponseSchema:
    """
    Build the cosmos.evm.vm.v1 message classes at runtime from a descriptor,
    so no generated *_pb2 module has to be kept in sync.
    """
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="evm_decoder/cosmos_evm_vm_v1.proto",
        package=_PACKAGE,
        syntax="proto3",
    )
    for message_name, fields in _MESSAGES.items():
        message_proto = file_proto.message_type.add(name=message_name)
        for name, number, field_type, repeated, type_name in fields:
            field_proto = message_proto.field.add(
                name=name,
                number=number,
                type=field_type,
                label=_F.LABEL_REPEATED if repeated else _F.LABEL_OPTIONAL,
            )
            if type_name is not None:
                field_proto.type_name = f".{_PACKAGE}.{type_name}"

    pool = descriptor_pool.DescriptorPool()
    pool.Add(file_proto)

    return EvmResponseSchema(
        tx_msg_data=message_factory.GetMessageClass(
            pool.FindMessageTypeByName(f"{_PACKAGE}.TxMsgData")
        ),
        msg_ethereum_tx_response=message_factory.GetMessageClass(
            pool.FindMessageTypeByName(f"{_PACKAGE}.MsgEthereumTxResponse")
        ),
    )


class ProtobufExecutionResultDecoder:
    """
    Decoder for the execution response stored with a Cosmos tx.

    It:
    - hex-decodes the tx_response.data payload (TxMsgData),
    - takes the first msg response (google.protobuf.Any),
    - decodes it as MsgEthereumTxResponse when the type URL says so,
    - maps logs / gas_used / vm_error into an ExecutionResult.

    Returns None for anything that is not an EVM message response. That is
    the common case for non-EVM transactions, so it is logged at debug level.
    """

    def __init__(self, *, schema: EvmResponseSchema | None = None) -> None:
        self._schema = schema or build_evm_response_schema()

    @property
    def schema(self) -> EvmResponseSchema:
        return self._schema

    def decode(self, response: str | bytes | None) -> ExecutionResult | None:
        if not response:
            return None

        try:
            payload = _response_bytes(response)
            envelope: Any = self._schema.tx_msg_data.FromString(payload)
        except (ValueError, binascii.Error, DecodeError) as exc:
            logger.debug("Unrecognized tx response envelope: %s", exc)
            return None

        if not envelope.msg_responses:
            return None

        first = envelope.msg_responses[0]
        if not first.type_url.endswith(self._schema.response_type_suffix):
            logger.debug("Tx response is not an EVM response: %s", first.type_url)
            return None

        try:
            response_msg: Any = self._schema.msg_ethereum_tx_response.FromString(first.value)
        except DecodeError as exc:
            logger.debug("Malformed MsgEthereumTxResponse: %s", exc)
            return None

        gas_used = int(response_msg.gas_used)
        if gas_used > MAX_BIGINT:
            logger.warning("Ignoring tx response with out-of-range gas_used %s", gas_used)
            return None

        return ExecutionResult(
            logs=_map_logs(response_msg.logs),
            gas_used=gas_used,
            vm_error=response_msg.vm_error or None,
        )


def _response_bytes(response: str | bytes) -> bytes:
    if isinstance(response, (bytes, bytearray, memoryview)):
        return bytes(response)
    text = response.strip().strip('"')
    if text[:2].lower() == "0x":
        text = text[2:]
    return bytes.fromhex(text)


def _map_logs(raw_logs: Any) -> tuple[DecodedLog, ...]:
    # Log.index is the block-level log index; fall back to position when an
    # envelope does not carry usable (unique, storable) indexes.
    indexes = [int(log.index) for log in raw_logs]
    if len(set(indexes)) != len(indexes) or any(i > MAX_INTEGER for i in indexes):
        indexes = list(range(len(indexes)))

    return tuple(
        DecodedLog(
            tx_id="",
            log_index=log_index,
            address=log.address.lower(),
            topics=tuple(topic.lower() for topic in log.topics),
            data="0x" + bytes(log.data).hex(),
        )
        for log_index, log in zip(indexes, raw_logs)
    )
