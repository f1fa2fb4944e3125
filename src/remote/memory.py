"""In-process implementations of the remote collaborators.

Behave like the hosted services closely enough for tests and offline demos:
accounts with passwords, a profile map, and an ordered message collection that
pushes a full snapshot to every subscriber after each append.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from errors import AuthError, SendError
from models import AuthUser, Profile, coerce_timestamp
from remote.base import (
    SERVER_TIMESTAMP,
    IdentityListener,
    RemoteRecord,
    SnapshotStream,
    Unsubscribe,
)

logger = logging.getLogger(__name__)


class InMemoryIdentityProvider:
    def __init__(self) -> None:
        self.accounts: dict[str, tuple[str, AuthUser]] = {}
        self.current_user: AuthUser | None = None
        self.login_calls = 0
        self.fail_sign_out: Exception | None = None
        self._listeners: list[IdentityListener] = []

    def add_account(self, email: str, secret: str, user_id: str | None = None) -> AuthUser:
        user = AuthUser(user_id=user_id or uuid.uuid4().hex, email=email)
        self.accounts[email.lower()] = (secret, user)
        return user

    def _set_current(self, user: AuthUser | None) -> None:
        self.current_user = user
        for listener in list(self._listeners):
            listener(user)

    async def login(self, email: str, secret: str) -> AuthUser:
        self.login_calls += 1
        entry = self.accounts.get(email.lower())
        if entry is None or entry[0] != secret:
            raise AuthError("Invalid email or password", code="INVALID_LOGIN_CREDENTIALS")
        self._set_current(entry[1])
        return entry[1]

    async def register(self, email: str, secret: str) -> AuthUser:
        if email.lower() in self.accounts:
            raise AuthError("Email is already in use", code="EMAIL_EXISTS")
        if len(secret) < 6:
            raise AuthError("Password should be at least 6 characters", code="WEAK_PASSWORD")
        user = self.add_account(email, secret)
        self._set_current(user)
        return user

    async def sign_out(self) -> None:
        if self.fail_sign_out is not None:
            raise self.fail_sign_out
        self._set_current(None)

    def on_identity_changed(self, callback: IdentityListener) -> Unsubscribe:
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe


class InMemoryProfileStore:
    def __init__(self) -> None:
        self.profiles: dict[str, Profile] = {}
        self.get_calls = 0
        self.fail_put: Exception | None = None

    async def get(self, user_id: str) -> Profile | None:
        self.get_calls += 1
        return self.profiles.get(user_id)

    async def put(self, user_id: str, profile: Profile) -> None:
        if self.fail_put is not None:
            raise self.fail_put
        self.profiles[user_id] = profile


class InMemoryMessageStore:
    def __init__(self) -> None:
        self.documents: dict[str, dict[str, Any]] = {}
        self.append_calls = 0
        self.fail_append: Exception | None = None
        self._streams: list[tuple[str, SnapshotStream]] = []

    def _snapshot(self, order_key: str) -> list[RemoteRecord]:
        # documents lacking the order key are not part of an ordered query
        stamped = [
            (coerce_timestamp(data.get(order_key)), doc_id, data)
            for doc_id, data in self.documents.items()
            if coerce_timestamp(data.get(order_key)) is not None
        ]
        stamped.sort(key=lambda item: item[0])  # type: ignore[arg-type,return-value]
        return [RemoteRecord(id=doc_id, data=dict(data)) for _, doc_id, data in stamped]

    def _broadcast(self) -> None:
        self._streams = [(k, s) for k, s in self._streams if not s.closed]
        for order_key, stream in self._streams:
            stream.publish(self._snapshot(order_key))

    def insert(self, doc_id: str, data: Mapping[str, Any]) -> None:
        """Write a document as another client would, then notify subscribers."""
        self.documents[doc_id] = dict(data)
        self._broadcast()

    def broadcast_error(self, error: Exception) -> None:
        for _, stream in self._streams:
            stream.publish_error(error)

    async def append(self, record: Mapping[str, Any]) -> str:
        self.append_calls += 1
        if self.fail_append is not None:
            raise SendError(str(self.fail_append)) from self.fail_append
        data = {
            key: (datetime.now(timezone.utc) if value is SERVER_TIMESTAMP else value)
            for key, value in record.items()
        }
        doc_id = uuid.uuid4().hex
        self.insert(doc_id, data)
        return doc_id

    def subscribe_ordered(self, order_key: str) -> SnapshotStream:
        stream = SnapshotStream()
        self._streams.append((order_key, stream))
        stream.publish(self._snapshot(order_key))
        logger.debug("In-memory subscription opened (%s streams)", len(self._streams))
        return stream
