"""
Key-value store contract.

The store offers get/set over whole top-level keys and nothing else: no
compare-and-swap, no transactions. Callers that read-modify-write must
serialize themselves (see StoreAdapter).
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from typing import Any, Protocol


class StoreError(Exception):
    """Raised when the backing store cannot be read or written."""

    pass


class KeyValueStore(Protocol):
    async def get(self, keys: Iterable[str] | None = None) -> dict[str, Any]:
        """Return the stored values for keys (all keys when None). Missing keys are omitted."""
        ...

    async def set(self, items: Mapping[str, Any]) -> None: ...

    async def remove(self, keys: Iterable[str]) -> None: ...

    async def clear(self) -> None: ...


class MemoryKeyValueStore:
    """Process-local store. Values are deep-copied in and out, like a real store."""

    def __init__(self, initial: Mapping[str, Any] | None = None):
        self._data: dict[str, Any] = copy.deepcopy(dict(initial or {}))

    async def get(self, keys: Iterable[str] | None = None) -> dict[str, Any]:
        if keys is None:
            return copy.deepcopy(self._data)
        return {k: copy.deepcopy(self._data[k]) for k in keys if k in self._data}

    async def set(self, items: Mapping[str, Any]) -> None:
        for key, value in items.items():
            self._data[key] = copy.deepcopy(value)

    async def remove(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()

    def snapshot(self) -> dict[str, Any]:
        """Synchronous copy of everything stored (for inspection in tests and tools)."""
        return copy.deepcopy(self._data)
