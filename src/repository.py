"""Credential and message-history caches wrapping a local key-value store."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence

from pydantic import ValidationError

from data.kv_store import KeyValueStore, get_many
from errors import StorageError
from models import CredentialRecord, Message, order_messages

logger = logging.getLogger(__name__)

EMAIL_KEY = "last_email"
SECRET_KEY = "last_secret"
DISPLAY_NAME_KEY = "last_display_name"
HISTORY_KEY = "chat_history"


class CredentialCache:
    """Last-known identity, persisted across restarts.

    Storage faults never escape: failed reads look like absent keys and failed
    writes are logged and dropped.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Raw key access
    # ------------------------------------------------------------------
    async def get(self, key: str) -> str | None:
        try:
            return await self._store.get(key)
        except StorageError as exc:
            logger.warning("Credential cache read failed for %s: %s", key, exc)
            return None

    async def set(self, key: str, value: str) -> None:
        try:
            await self._store.set(key, value)
        except StorageError as exc:
            logger.warning("Credential cache write failed for %s: %s", key, exc)

    async def remove(self, key: str) -> None:
        try:
            await self._store.remove(key)
        except StorageError as exc:
            logger.warning("Credential cache remove failed for %s: %s", key, exc)

    # ------------------------------------------------------------------
    # Record helpers
    # ------------------------------------------------------------------
    async def load(self) -> CredentialRecord:
        """Read email, secret and display name concurrently."""
        try:
            email, secret, name = await get_many(
                self._store, [EMAIL_KEY, SECRET_KEY, DISPLAY_NAME_KEY]
            )
        except StorageError as exc:
            logger.warning("Credential cache unavailable: %s", exc)
            return CredentialRecord()
        return CredentialRecord(
            email=email or None, secret=secret or None, cached_display_name=name or None
        )

    async def save(self, email: str, secret: str, display_name: str) -> None:
        await self.set(EMAIL_KEY, email)
        await self.set(SECRET_KEY, secret)
        await self.set(DISPLAY_NAME_KEY, display_name)

    async def save_display_name(self, display_name: str) -> None:
        await self.set(DISPLAY_NAME_KEY, display_name)

    async def clear(self) -> None:
        for key in (EMAIL_KEY, SECRET_KEY, DISPLAY_NAME_KEY):
            await self.remove(key)


class MessageLogCache:
    """Mirror of the latest message snapshot, used to paint before going live."""

    def __init__(self, store: KeyValueStore, key: str = HISTORY_KEY) -> None:
        self._store = store
        self._key = key

    async def load(self) -> list[Message]:
        try:
            raw = await self._store.get(self._key)
        except StorageError as exc:
            logger.warning("Message history read failed: %s", exc)
            return []
        if not raw:
            return []

        try:
            items = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Discarding unreadable message history: %s", exc)
            return []
        if not isinstance(items, list):
            return []

        messages: list[Message] = []
        for item in items:
            try:
                messages.append(Message.model_validate(item))
            except ValidationError as exc:
                logger.debug("Skipping malformed cached message: %s", exc)
        return order_messages(messages)

    async def save(self, messages: Sequence[Message]) -> None:
        """Overwrite the mirror with ``messages``."""
        payload = json.dumps([m.model_dump(mode="json") for m in messages])
        try:
            await self._store.set(self._key, payload)
        except StorageError as exc:
            logger.warning("Message history write failed: %s", exc)
