from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Any, Awaitable, Callable, Protocol

from evm_decoder.app.domain.models import DecodeOutcome, ExecutionResult, PendingWorkItem


class DecodeSession(Protocol):
    """
    Unit of work over the pending queue and the decoded tables.

    One session = one database transaction. Everything written through
    save() becomes visible together on commit or not at all.
    """

    async def fetch_pending(self, *, limit: int) -> list[PendingWorkItem]:
        """Claim up to `limit` pending items that have not been decoded yet."""
        ...

    async def fetch_pending_item(self, *, tx_id: str) -> PendingWorkItem | None:
        ...

    async def fetch_decoded_hash(self, *, tx_id: str) -> str | None:
        ...

    async def fetch_execution_response(self, *, tx_id: str) -> str | None:
        """Hex encoded TxMsgData of the ledger's tx response, if recorded."""
        ...

    async def save(self, outcome: DecodeOutcome) -> None:
        """
        Insert every derived row with conflict-ignored semantics and retire
        the pending item.

        Raises OutcomeRejectedError, with nothing of the item written, when
        the database refuses one of the rows.
        """
        ...


class DecodeStore(Protocol):
    def transaction(self) -> AbstractAsyncContextManager[DecodeSession]:
        ...


class ExecutionResultDecoder(Protocol):
    def decode(self, response: str | bytes | None) -> ExecutionResult | None:
        """
        Decode a binary tx-response envelope.

        Return:
          - ExecutionResult for an EVM message response
          - None if the envelope is absent or not an EVM response
        """
        ...


class SignatureLookup(Protocol):
    """
    Resolves a 4-byte selector (0x-prefixed hex) into a text signature,
    e.g. "0xa9059cbb" -> "transfer(address,uint256)".
    """

    async def lookup(self, selector: str) -> str | None:
        ...


class Erc20TokenMetadataFetcher(Protocol):
    """
    Best-effort ERC-20 metadata lookup used by the backfill.

    Implementations should return a dict with:
      - symbol (str | None)
      - decimals (int | None)
      - name (str | None)

    token_address is a 0x-prefixed hex string.
    """

    async def fetch(self, *, token_address: str) -> dict[str, Any]:
        ...


class NotificationConnection(Protocol):
    """The subset of asyncpg.Connection the priority listener relies on."""

    async def add_listener(self, channel: str, callback: Callable[..., Any]) -> None:
        ...

    def add_termination_listener(self, callback: Callable[..., Any]) -> None:
        ...

    def is_closed(self) -> bool:
        ...

    async def close(self) -> None:
        ...


NotificationConnector = Callable[[], Awaitable[NotificationConnection]]


class BackfillReconciler(Protocol):
    """
    Port for one-shot repair jobs re-deriving logs, contracts, tokens and
    transfers from data that is already persisted.

    Every phase must be idempotent and safe to re-run.
    """

    async def backfill_logs(self) -> int: ...

    async def backfill_contracts(self) -> int: ...

    async def backfill_tokens(self) -> int: ...

    async def backfill_token_transfers(self) -> int: ...

    async def backfill_token_metadata(self) -> int: ...
