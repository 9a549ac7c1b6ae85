from __future__ import annotations

import logging
from typing import Any

from web3 import AsyncWeb3
from web3.contract.async_contract import AsyncContract
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from evm_decoder.app.domain.ports.out import Erc20TokenMetadataFetcher

logger = logging.getLogger(__name__)

# Minimal ERC-20 ABI fragments
_ERC20_ABI_STD = [
    {"name": "symbol", "type": "function", "stateMutability": "view", "inputs": [], "outputs": [{"name": "", "type": "string"}]},
    {"name": "decimals", "type": "function", "stateMutability": "view", "inputs": [], "outputs": [{"name": "", "type": "uint8"}]},
    {"name": "name", "type": "function", "stateMutability": "view", "inputs": [], "outputs": [{"name": "", "type": "string"}]},
]

# Early tokens (MKR, SAI, ...) return bytes32 instead of string
_ERC20_ABI_LEGACY = [
    {"name": "symbol", "type": "function", "stateMutability": "view", "inputs": [], "outputs": [{"name": "", "type": "bytes32"}]},
    {"name": "decimals", "type": "function", "stateMutability": "view", "inputs": [], "outputs": [{"name": "", "type": "uint256"}]},
    {"name": "name", "type": "function", "stateMutability": "view", "inputs": [], "outputs": [{"name": "", "type": "bytes32"}]},
]


class Web3Erc20TokenMetadataFetcher(Erc20TokenMetadataFetcher):
    """
    ERC-20 metadata fetcher using AsyncWeb3 against the ledger's EVM JSON-RPC.

    Fetches:
      - symbol() -> str | None
      - decimals() -> int | None
      - name() -> str | None

    Every call is best-effort: a revert, a non-ERC20 contract or a provider
    error leaves the field as None.
    """

    def __init__(self, *, w3: AsyncWeb3) -> None:
        self._w3 = w3

    async def fetch(self, *, token_address: str) -> dict[str, Any]:
        addr = self._w3.to_checksum_address(token_address)

        contract_std: AsyncContract = self._w3.eth.contract(address=addr, abi=_ERC20_ABI_STD)
        contract_legacy: AsyncContract = self._w3.eth.contract(address=addr, abi=_ERC20_ABI_LEGACY)

        symbol = self._normalize_symbol_name(await self._safe_call(contract_std, "symbol"))
        name = self._normalize_symbol_name(await self._safe_call(contract_std, "name"))
        decimals = self._normalize_decimals(await self._safe_call(contract_std, "decimals"))

        # Fall back to the bytes32 ABI only for fields still missing
        if symbol is None:
            symbol = self._normalize_symbol_name(await self._safe_call(contract_legacy, "symbol"))

        if name is None:
            name = self._normalize_symbol_name(await self._safe_call(contract_legacy, "name"))

        if decimals is None:
            decimals = self._normalize_decimals(await self._safe_call(contract_legacy, "decimals"))

        return {"symbol": symbol, "decimals": decimals, "name": name}

    @staticmethod
    def _normalize_decimals(val: Any) -> int | None:
        if isinstance(val, int) and not isinstance(val, bool) and 0 <= val <= 255:
            return val
        return None

    @staticmethod
    def _normalize_symbol_name(val: Any) -> str | None:
        if val is None:
            return None

        if isinstance(val, str):
            return val.replace("\x00", "").strip() or None

        if isinstance(val, (bytes, bytearray, memoryview)):
            try:
                return bytes(val).rstrip(b"\x00").decode("utf-8").strip() or None
            except UnicodeDecodeError:
                return None

        return None

    async def _safe_call(self, contract: AsyncContract, fn_name: str) -> Any | None:
        try:
            fn = getattr(contract.functions, fn_name)
            return await fn().call()
        except (BadFunctionCallOutput, ContractLogicError, ValueError):
            # Non-ERC20, proxy weirdness, revert, or empty response
            return None
        except Exception as exc:
            # Network / timeout / provider error
            logger.debug("eth_call %s() failed on %s: %s", fn_name, contract.address, exc)
            return None
