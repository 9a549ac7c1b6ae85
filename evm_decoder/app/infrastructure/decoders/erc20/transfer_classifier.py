from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final, Iterable, Union

from eth_utils import encode_hex, keccak

from evm_decoder.app.domain.models import DecodedLog, TokenDraft, TokenTransferDraft

TRANSFER_EVENT_SIGNATURE: Final[str] = "Transfer(address,address,uint256)"
TRANSFER_TOPIC: Final[str] = encode_hex(keccak(text=TRANSFER_EVENT_SIGNATURE))

_MIN_TRANSFER_TOPICS: Final[int] = 3
_TOKEN_TYPE: Final[str] = "ERC20"


@dataclass(frozen=True)
class RecognizedTransfer:
    log: DecodedLog
    from_address: str
    to_address: str
    value: str


@dataclass(frozen=True)
class Unrecognized:
    log: DecodedLog


LogClass = Union[RecognizedTransfer, Unrecognized]


@dataclass(frozen=True)
class LogClassification:
    token_candidates: tuple[TokenDraft, ...] = field(default_factory=tuple)
    transfers: tuple[TokenTransferDraft, ...] = field(default_factory=tuple)


def topic_as_address(topic: str) -> str:
    """Indexed address topics are 32-byte words, left-zero padded."""
    word = topic[2:] if topic[:2].lower() == "0x" else topic
    if len(word) != 64:
        raise ValueError(f"Expected a 32-byte topic, got {topic!r}")
    return "0x" + word[-40:].lower()


class TransferLogClassifier:
    """
    Capability check for the Transfer(address,address,uint256) event shape.

    A log is recognized when topics[0] is the Transfer topic and it carries
    at least the two indexed address topics. ERC-721 transfers share the same
    topic0 (with a third indexed topic for the token id); they are recognized
    too and stored with the raw data payload.
    """

    def __init__(self, *, transfer_topic: str = TRANSFER_TOPIC) -> None:
        self._transfer_topic = transfer_topic.lower()

    @property
    def transfer_topic(self) -> str:
        return self._transfer_topic

    def classify_log(self, log: DecodedLog) -> LogClass:
        if log.topic0 is None or log.topic0.lower() != self._transfer_topic:
            return Unrecognized(log=log)
        if len(log.topics) < _MIN_TRANSFER_TOPICS:
            return Unrecognized(log=log)

        try:
            from_address = topic_as_address(log.topics[1])
            to_address = topic_as_address(log.topics[2])
        except ValueError:
            return Unrecognized(log=log)

        return RecognizedTransfer(
            log=log,
            from_address=from_address,
            to_address=to_address,
            value=log.data or "0x0",
        )

    def classify_logs(
        self,
        logs: Iterable[DecodedLog],
        *,
        tx_id: str,
        height: int | None,
        known_tokens: Iterable[str] = (),
    ) -> LogClassification:
        seen = {address.lower() for address in known_tokens}
        token_candidates: list[TokenDraft] = []
        transfers: list[TokenTransferDraft] = []

        for log in logs:
            classified = self.classify_log(log)
            if not isinstance(classified, RecognizedTransfer):
                continue

            token_address = log.address.lower()
            transfers.append(
                TokenTransferDraft(
                    tx_id=tx_id,
                    log_index=log.log_index,
                    token_address=token_address,
                    from_address=classified.from_address,
                    to_address=classified.to_address,
                    value=classified.value,
                )
            )

            if token_address not in seen:
                seen.add(token_address)
                token_candidates.append(
                    TokenDraft(
                        address=token_address,
                        type=_TOKEN_TYPE,
                        first_seen_tx=tx_id,
                        first_seen_height=height,
                    )
                )

        return LogClassification(
            token_candidates=tuple(token_candidates),
            transfers=tuple(transfers),
        )
