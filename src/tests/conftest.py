"""Shared fixtures wiring the sync core to in-memory collaborators."""

from __future__ import annotations

import asyncio

import pytest

from data.kv_store import InMemoryKeyValueStore
from models import Message
from remote.memory import InMemoryIdentityProvider, InMemoryMessageStore, InMemoryProfileStore
from repository import CredentialCache, MessageLogCache
from sync.controller import SessionController
from sync.identity import IdentityResolver
from sync.reconciler import StreamReconciler


@pytest.fixture
def kv() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def provider() -> InMemoryIdentityProvider:
    return InMemoryIdentityProvider()


@pytest.fixture
def profiles() -> InMemoryProfileStore:
    return InMemoryProfileStore()


@pytest.fixture
def message_store() -> InMemoryMessageStore:
    return InMemoryMessageStore()


@pytest.fixture
def credentials(kv: InMemoryKeyValueStore) -> CredentialCache:
    return CredentialCache(kv)


@pytest.fixture
def history(kv: InMemoryKeyValueStore) -> MessageLogCache:
    return MessageLogCache(kv)


@pytest.fixture
def resolver(
    provider: InMemoryIdentityProvider,
    profiles: InMemoryProfileStore,
    credentials: CredentialCache,
) -> IdentityResolver:
    return IdentityResolver(provider, profiles, credentials)


@pytest.fixture
def reconciler(message_store: InMemoryMessageStore, history: MessageLogCache) -> StreamReconciler:
    return StreamReconciler(message_store, history)


@pytest.fixture
def controller(
    resolver: IdentityResolver, reconciler: StreamReconciler, credentials: CredentialCache
) -> SessionController:
    return SessionController(resolver, reconciler, credentials)


class SnapshotRecorder:
    """Collects snapshots delivered to a subscription callback."""

    def __init__(self) -> None:
        self.snapshots: list[list[Message]] = []
        self._queue: asyncio.Queue[list[Message]] = asyncio.Queue()

    def __call__(self, messages: list[Message]) -> None:
        self.snapshots.append(messages)
        self._queue.put_nowait(messages)

    async def next(self, timeout: float = 1.0) -> list[Message]:
        return await asyncio.wait_for(self._queue.get(), timeout)


@pytest.fixture
def recorder() -> SnapshotRecorder:
    return SnapshotRecorder()
