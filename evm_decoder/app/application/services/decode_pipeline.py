from __future__ import annotations

import dataclasses
import logging

from evm_decoder.app.domain.models import (
    DecodedLog,
    DecodedTransaction,
    DecodeFailure,
    DecodeOutcome,
    ExecutionResult,
    OutcomeRejectedError,
    PendingWorkItem,
    TokenDraft,
    TokenTransferDraft,
    TxStatus,
)
from evm_decoder.app.domain.ports.out import DecodeSession, ExecutionResultDecoder, SignatureLookup
from evm_decoder.app.infrastructure.decoders.erc20.transfer_classifier import TransferLogClassifier
from evm_decoder.app.infrastructure.decoders.evm.contract_address import resolve_contract
from evm_decoder.app.infrastructure.decoders.evm.transaction_decoder import (
    decode_transaction,
    function_name,
)

logger = logging.getLogger(__name__)


class DecodePipeline:
    """
    Decode -> classify -> resolve -> persist, for one pending item at a time.

    Shared by the priority listener, the batch drain loop and the backfill.
    The caller owns the transaction (DecodeSession); the pipeline never
    commits or rolls back on its own.
    """

    def __init__(
        self,
        *,
        response_decoder: ExecutionResultDecoder,
        classifier: TransferLogClassifier | None = None,
        signature_lookup: SignatureLookup | None = None,
    ) -> None:
        self._response_decoder = response_decoder
        self._classifier = classifier or TransferLogClassifier()
        self._signature_lookup = signature_lookup

    @property
    def response_decoder(self) -> ExecutionResultDecoder:
        return self._response_decoder

    @property
    def classifier(self) -> TransferLogClassifier:
        return self._classifier

    async def build_outcome(
        self,
        session: DecodeSession,
        item: PendingWorkItem,
        *,
        known_tokens: set[str] | None = None,
    ) -> DecodeOutcome:
        decoded = decode_transaction(
            item.raw_bytes,
            item.tx_id,
            item.gas_used,
            known_hash=item.known_hash,
        )
        if isinstance(decoded, DecodeFailure):
            return DecodeOutcome(transaction=DecodedTransaction.placeholder(item.tx_id))

        response = await session.fetch_execution_response(tx_id=item.tx_id)
        result = self._response_decoder.decode(response)

        logs: tuple[DecodedLog, ...] = ()
        tokens: tuple[TokenDraft, ...] = ()
        transfers: tuple[TokenTransferDraft, ...] = ()
        if result is not None:
            result = result.with_tx_id(item.tx_id)
            decoded = _apply_execution_result(decoded, result)
            logs = result.logs

            classification = self._classifier.classify_logs(
                logs,
                tx_id=item.tx_id,
                height=item.height,
                known_tokens=known_tokens or (),
            )
            tokens = classification.token_candidates
            transfers = classification.transfers
            if known_tokens is not None:
                known_tokens.update(token.address for token in tokens)

        decoded = await self._resolve_signature(decoded)

        return DecodeOutcome(
            transaction=decoded,
            logs=logs,
            tokens=tokens,
            transfers=transfers,
            contract=resolve_contract(decoded, height=item.height),
        )

    async def process_item(
        self,
        session: DecodeSession,
        item: PendingWorkItem,
        *,
        known_tokens: set[str] | None = None,
    ) -> DecodeOutcome:
        outcome = await self.build_outcome(session, item, known_tokens=known_tokens)
        try:
            await session.save(outcome)
        except OutcomeRejectedError as exc:
            # Decoded fine but not storable; a retry would fail the same way
            logger.warning("Storing placeholder for %s: %s", item.tx_id, exc)
            if known_tokens is not None:
                # their rows were not written; a later item must emit them again
                known_tokens.difference_update(token.address for token in outcome.tokens)
            outcome = DecodeOutcome(transaction=DecodedTransaction.placeholder(item.tx_id))
            await session.save(outcome)
        return outcome

    async def _resolve_signature(self, tx: DecodedTransaction) -> DecodedTransaction:
        if self._signature_lookup is None or tx.function_name is not None:
            return tx
        selector = tx.selector
        if selector is None:
            return tx

        try:
            signature = await self._signature_lookup.lookup(selector)
        except Exception as exc:
            logger.warning("Signature lookup for %s failed: %s", selector, exc)
            return tx

        if not signature:
            return tx
        return dataclasses.replace(
            tx,
            function_signature=signature,
            function_name=function_name(signature),
        )


def _apply_execution_result(tx: DecodedTransaction, result: ExecutionResult) -> DecodedTransaction:
    return dataclasses.replace(
        tx,
        gas_used=result.gas_used,
        status=TxStatus.FAILURE if result.vm_error else TxStatus.SUCCESS,
    )
