"""Local key-value store contract and an in-memory implementation."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Protocol


class KeyValueStore(Protocol):
    """Durable string-to-string store used by the local caches.

    Implementations raise ``StorageError`` on storage-layer faults.
    """

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


async def get_many(store: KeyValueStore, keys: Sequence[str]) -> list[str | None]:
    """Read several independent keys concurrently."""
    return list(await asyncio.gather(*[store.get(k) for k in keys]))


class InMemoryKeyValueStore:
    """Dict-backed store; survives nothing but is handy in tests and demos."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)
