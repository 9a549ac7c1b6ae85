from __future__ import annotations

import logging
import re
from typing import Any, Final

import httpx

from evm_decoder.app.domain.ports.out import SignatureLookup
from evm_decoder.app.infrastructure.fetchers.signature_cache import SignatureCache

logger = logging.getLogger(__name__)

_SELECTOR_RE: Final = re.compile(r"^0x[0-9a-f]{8}$")


class HttpxFourByteSignatureLookup(SignatureLookup):
    """
    Function signature lookup against a 4byte.directory compatible API.

    GET {base_url}?hex_signature=0xa9059cbb
      -> {"results": [{"text_signature": "transfer(address,uint256)"}, ...]}

    Answers (including "unknown") are kept in the injected SignatureCache.
    Transport errors are not cached so the selector is retried later.
    Never raises: enrichment is best-effort.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        cache: SignatureCache,
        base_url: str,
    ) -> None:
        self._client = client
        self._cache = cache
        self._base_url = base_url

    async def lookup(self, selector: str) -> str | None:
        selector = selector.lower()
        if not _SELECTOR_RE.match(selector):
            return None

        if self._cache.contains(selector):
            return self._cache.get(selector)

        try:
            response = await self._client.get(
                self._base_url,
                params={"hex_signature": selector},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Signature lookup failed for %s: %s", selector, exc)
            return None

        signature = self._first_signature(payload)
        self._cache.put(selector, signature)
        return signature

    @staticmethod
    def _first_signature(payload: Any) -> str | None:
        if not isinstance(payload, dict):
            return None
        results = payload.get("results")
        if not isinstance(results, list) or not results:
            return None
        first = results[0]
        if not isinstance(first, dict):
            return None
        text = first.get("text_signature")
        if isinstance(text, str) and text.strip():
            return text.strip()
        return None
