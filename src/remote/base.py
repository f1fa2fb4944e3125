"""Contracts for the remote collaborators and the live snapshot stream."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from models import AuthUser, Profile

logger = logging.getLogger(__name__)

IdentityListener = Callable[[AuthUser | None], None]
Unsubscribe = Callable[[], None]


class _ServerTimestamp:
    """Placeholder asking the store to stamp the write with its own clock."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class RemoteRecord:
    """One document of a snapshot: its store-assigned id and raw fields."""

    id: str
    data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SnapshotEvent:
    """Either a full ordered result set or a transient subscription error."""

    records: list[RemoteRecord] | None = None
    error: Exception | None = None


class SnapshotStream:
    """Cancellable async iterator of snapshot events.

    Producers call ``publish``/``publish_error``; the consumer iterates. Once
    ``close`` runs, pending events are dropped and iteration stops.
    """

    def __init__(self, on_close: Callable[[], None] | None = None) -> None:
        self._queue: asyncio.Queue[SnapshotEvent | None] = asyncio.Queue()
        self._closed = False
        self._on_close = on_close

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, records: Iterable[RemoteRecord]) -> None:
        if not self._closed:
            self._queue.put_nowait(SnapshotEvent(records=list(records)))

    def publish_error(self, error: Exception) -> None:
        if not self._closed:
            self._queue.put_nowait(SnapshotEvent(error=error))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)
        if self._on_close is not None:
            try:
                self._on_close()
            except Exception as exc:  # noqa: BLE001
                logger.debug("Snapshot stream close hook failed: %s", exc)

    def __aiter__(self) -> SnapshotStream:
        return self

    async def __anext__(self) -> SnapshotEvent:
        if self._closed:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is None or self._closed:
            raise StopAsyncIteration
        return event


class IdentityProvider(Protocol):
    async def login(self, email: str, secret: str) -> AuthUser: ...

    async def register(self, email: str, secret: str) -> AuthUser: ...

    async def sign_out(self) -> None: ...

    def on_identity_changed(self, callback: IdentityListener) -> Unsubscribe: ...


class ProfileStore(Protocol):
    async def get(self, user_id: str) -> Profile | None: ...

    async def put(self, user_id: str, profile: Profile) -> None: ...


class MessageStore(Protocol):
    async def append(self, record: Mapping[str, Any]) -> str: ...

    def subscribe_ordered(self, order_key: str) -> SnapshotStream: ...
