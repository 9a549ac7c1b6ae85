from __future__ import annotations

from collections import OrderedDict
from typing import Final

_MISSING: Final = object()


class SignatureCache:
    """
    Bounded LRU cache of selector -> text signature.

    None is a valid cached value (the lookup service knows no signature for
    the selector), so `contains()` has to be checked before `get()`.
    """

    def __init__(self, *, capacity: int = 4096) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._entries: OrderedDict[str, str | None] = OrderedDict()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._entries)

    def contains(self, selector: str) -> bool:
        return selector.lower() in self._entries

    def get(self, selector: str) -> str | None:
        key = selector.lower()
        value = self._entries.get(key, _MISSING)
        if value is _MISSING:
            return None
        self._entries.move_to_end(key)
        return value  # type: ignore[return-value]

    def put(self, selector: str, signature: str | None) -> None:
        key = selector.lower()
        self._entries[key] = signature
        self._entries.move_to_end(key)
        while len(self._entries) > self._capacity:
            self._entries.popitem(last=False)
