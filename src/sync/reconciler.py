"""Live message log reconciliation.

Every remote snapshot replaces the in-memory log wholesale, is mirrored to the
local history cache, and is then handed to the UI callback. Snapshots are
processed one at a time in delivery order.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from errors import SendError, TransientStreamError
from models import Identity, Message, MessageKind, message_from_record, order_messages
from remote.base import (
    SERVER_TIMESTAMP,
    MessageStore,
    RemoteRecord,
    SnapshotEvent,
    SnapshotStream,
)
from repository import MessageLogCache

log = logging.getLogger(__name__)

ORDER_KEY = "createdAt"

SnapshotCallback = Callable[[list[Message]], Awaitable[None] | None]


class StreamState(str, Enum):
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBING = "subscribing"
    SYNCED = "synced"
    DEGRADED = "degraded"


class Subscription:
    """Handle returned by ``StreamReconciler.subscribe``."""

    def __init__(self, stream: SnapshotStream, on_dispose: Callable[[Subscription], None]) -> None:
        self._stream = stream
        self._on_dispose = on_dispose
        self._task: asyncio.Task[None] | None = None
        self.disposed = False

    def _attach(self, task: asyncio.Task[None]) -> None:
        self._task = task

    def dispose(self) -> None:
        """Detach from the remote stream. Safe to call more than once."""
        if self.disposed:
            return
        self.disposed = True
        self._stream.close()
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()
        self._on_dispose(self)

    async def wait_closed(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class StreamReconciler:
    def __init__(self, store: MessageStore, cache: MessageLogCache) -> None:
        self._store = store
        self._cache = cache
        self._messages: list[Message] = []
        self._live = False
        self._active: Subscription | None = None
        self.state = StreamState.UNSUBSCRIBED
        self.last_error: Exception | None = None

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    async def bootstrap(self) -> list[Message]:
        """Paint from the history cache until the first live snapshot lands."""
        if not self._live:
            self._messages = await self._cache.load()
            log.debug("Loaded %s cached messages", len(self._messages))
        return self.messages

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------
    def subscribe(self, on_snapshot: SnapshotCallback) -> Subscription:
        if self._active is not None:
            log.info("Replacing existing message subscription")
            self._active.dispose()

        self.state = StreamState.SUBSCRIBING
        stream = self._store.subscribe_ordered(ORDER_KEY)
        subscription = Subscription(stream, self._on_dispose)
        task = asyncio.get_running_loop().create_task(
            self._pump(stream, subscription, on_snapshot)
        )
        subscription._attach(task)
        self._active = subscription
        return subscription

    def _on_dispose(self, subscription: Subscription) -> None:
        if self._active is subscription:
            self._active = None
            self.state = StreamState.UNSUBSCRIBED

    async def _pump(
        self,
        stream: SnapshotStream,
        subscription: Subscription,
        on_snapshot: SnapshotCallback,
    ) -> None:
        async for event in stream:
            if subscription.disposed:
                break
            try:
                await self._apply(event, subscription, on_snapshot)
            except Exception as exc:
                # keep the subscription alive; the next snapshot supersedes this one
                self.last_error = exc
                self.state = StreamState.DEGRADED
                log.error("Failed to apply message snapshot: %s", exc, exc_info=True)

    async def _apply(
        self,
        event: SnapshotEvent,
        subscription: Subscription,
        on_snapshot: SnapshotCallback,
    ) -> None:
        if event.error is not None or event.records is None:
            self.last_error = event.error
            if self.state is not StreamState.SUBSCRIBING:
                self.state = StreamState.DEGRADED
            if isinstance(event.error, TransientStreamError):
                log.warning("Message stream hiccup, keeping last snapshot: %s", event.error)
            else:
                log.error("Message stream error, keeping last snapshot: %s", event.error)
            return

        messages = order_messages(self._transform(event.records))
        self._messages = messages
        self._live = True
        self.state = StreamState.SYNCED
        self.last_error = None

        await self._cache.save(messages)
        if subscription.disposed:
            return

        try:
            result = on_snapshot(list(messages))
            if inspect.isawaitable(result):
                await result
        except Exception as exc:  # noqa: BLE001
            log.error("Snapshot callback failed: %s", exc)

    @staticmethod
    def _transform(records: list[RemoteRecord]) -> list[Message]:
        """Convert a snapshot, dropping documents that cannot form a message."""
        messages: list[Message] = []
        for record in records:
            try:
                messages.append(message_from_record(record.id, record.data))
            except (TypeError, ValueError) as exc:
                log.warning("Skipping malformed message %s: %s", record.id, exc)
        return messages

    def close(self) -> None:
        if self._active is not None:
            self._active.dispose()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------
    async def send(
        self, identity: Identity, display_name: str, kind: MessageKind, payload: str
    ) -> None:
        """Append one message; it shows up with the next snapshot."""
        record: dict[str, object] = {
            "type": kind.value,
            "user": display_name,
            "createdAt": SERVER_TIMESTAMP,
        }
        if kind is MessageKind.IMAGE:
            record["imageBase64"] = payload
        else:
            record["text"] = payload

        try:
            doc_id = await self._store.append(record)
        except SendError:
            raise
        except Exception as exc:
            raise SendError(f"Failed to send message: {exc}") from exc
        log.debug("Appended %s message %s for uid=%s", kind.value, doc_id, identity.user_id)
