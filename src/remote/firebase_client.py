"""Asynchronous Firebase client used by the sync layer.

Talks to the Identity Toolkit and Firestore REST APIs over aiohttp. The live
message subscription is emulated by polling an ordered query and emitting a
full snapshot whenever the result set changes.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import aiohttp

from config import FirebaseConfig
from errors import AuthError, SendError, TransientStreamError
from models import AuthUser, Profile
from remote.base import (
    SERVER_TIMESTAMP,
    IdentityListener,
    RemoteRecord,
    SnapshotStream,
    Unsubscribe,
)
from remote.firestore_codec import decode_document, encode_fields

logger = logging.getLogger(__name__)

AUTH_BASE_URL = "https://identitytoolkit.googleapis.com/v1"
TOKEN_URL = "https://securetoken.googleapis.com/v1/token"
FIRESTORE_BASE_URL = "https://firestore.googleapis.com/v1"

# Refresh the id token this many seconds before it actually expires
TOKEN_EXPIRY_MARGIN = 60.0

AUTH_ERROR_MESSAGES = {
    "EMAIL_EXISTS": "Email is already in use",
    "EMAIL_NOT_FOUND": "Invalid email or password",
    "INVALID_PASSWORD": "Invalid email or password",
    "INVALID_LOGIN_CREDENTIALS": "Invalid email or password",
    "INVALID_EMAIL": "Email address is badly formatted",
    "USER_DISABLED": "This account has been disabled",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many attempts, try again later",
    "TOKEN_EXPIRED": "Session expired, sign in again",
    "INVALID_REFRESH_TOKEN": "Session expired, sign in again",
}

_AUTO_ID_ALPHABET = string.ascii_letters + string.digits


def auto_id() -> str:
    """20-character document id in the style of the Firestore SDKs."""
    return "".join(secrets.choice(_AUTO_ID_ALPHABET) for _ in range(20))


def parse_auth_error(payload: Any) -> AuthError:
    """Map an Identity Toolkit error body to an ``AuthError``."""
    message = ""
    if isinstance(payload, Mapping):
        error = payload.get("error")
        if isinstance(error, Mapping):
            message = str(error.get("message") or "")
        elif isinstance(error, str):
            message = error
    # e.g. "WEAK_PASSWORD : Password should be at least 6 characters"
    code, _, detail = message.partition(" : ")
    code = code.strip() or "UNKNOWN"
    text = AUTH_ERROR_MESSAGES.get(code) or detail.strip() or code.replace("_", " ").capitalize()
    return AuthError(text, code=code)


@dataclass
class _TokenBundle:
    id_token: str
    refresh_token: str
    expires_at: float

    def is_expired(self) -> bool:
        return time.monotonic() >= self.expires_at - TOKEN_EXPIRY_MARGIN


class FirebaseClient:
    """Thin async wrapper around the Firebase REST endpoints."""

    def __init__(
        self, config: FirebaseConfig, session: aiohttp.ClientSession | None = None
    ) -> None:
        if not config.api_key:
            raise RuntimeError("FIREBASE_API_KEY env var not set")
        if not config.project_id:
            raise RuntimeError("FIREBASE_PROJECT_ID env var not set")

        self._config = config
        self._session = session
        self._owns_session = session is None
        self._tokens: _TokenBundle | None = None
        self._listeners: list[IdentityListener] = []
        self.current_user: AuthUser | None = None

    async def __aenter__(self) -> FirebaseClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._config.request_timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    async def _auth_request(
        self,
        url: str,
        *,
        json_body: dict[str, Any] | None = None,
        form: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        session = await self._get_session()
        try:
            async with session.post(
                url, params={"key": self._config.api_key}, json=json_body, data=form
            ) as resp:
                try:
                    payload = await resp.json(content_type=None)
                except ValueError as exc:
                    # front-end errors (502/503) come back as HTML
                    raise AuthError(
                        f"Unreadable authentication response (HTTP {resp.status})",
                        code="NETWORK_ERROR",
                    ) from exc
                if resp.status >= 400:
                    raise parse_auth_error(payload)
                return payload if isinstance(payload, dict) else {}
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise AuthError(
                f"Network error during authentication: {exc}", code="NETWORK_ERROR"
            ) from exc

    def _accept_auth(self, data: Mapping[str, Any]) -> AuthUser:
        self._tokens = _TokenBundle(
            id_token=str(data["idToken"]),
            refresh_token=str(data["refreshToken"]),
            expires_at=time.monotonic() + float(data.get("expiresIn", 3600)),
        )
        user = AuthUser(user_id=str(data["localId"]), email=data.get("email"))
        self._set_current_user(user)
        return user

    def _set_current_user(self, user: AuthUser | None) -> None:
        self.current_user = user
        for listener in list(self._listeners):
            try:
                listener(user)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Identity listener failed: %s", exc)

    async def sign_in_with_password(self, email: str, password: str) -> AuthUser:
        data = await self._auth_request(
            f"{AUTH_BASE_URL}/accounts:signInWithPassword",
            json_body={"email": email, "password": password, "returnSecureToken": True},
        )
        user = self._accept_auth(data)
        logger.info("Firebase sign-in OK: uid=%s", user.user_id)
        return user

    async def sign_up(self, email: str, password: str) -> AuthUser:
        data = await self._auth_request(
            f"{AUTH_BASE_URL}/accounts:signUp",
            json_body={"email": email, "password": password, "returnSecureToken": True},
        )
        user = self._accept_auth(data)
        logger.info("Firebase account created: uid=%s", user.user_id)
        return user

    def sign_out(self) -> None:
        """Drop the session tokens; the REST API keeps no server-side session."""
        self._tokens = None
        self._set_current_user(None)

    def add_auth_listener(self, callback: IdentityListener) -> Unsubscribe:
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    async def id_token(self) -> str:
        """Current id token, refreshed first when close to expiry."""
        if self._tokens is None:
            raise AuthError("Not signed in", code="NOT_SIGNED_IN")
        if self._tokens.is_expired():
            data = await self._auth_request(
                TOKEN_URL,
                form={
                    "grant_type": "refresh_token",
                    "refresh_token": self._tokens.refresh_token,
                },
            )
            self._tokens = _TokenBundle(
                id_token=str(data["id_token"]),
                refresh_token=str(data.get("refresh_token") or self._tokens.refresh_token),
                expires_at=time.monotonic() + float(data.get("expires_in", 3600)),
            )
            logger.debug("Firebase id token refreshed")
        return self._tokens.id_token

    # ------------------------------------------------------------------
    # Firestore
    # ------------------------------------------------------------------
    @property
    def documents_root(self) -> str:
        return (
            f"projects/{self._config.project_id}/databases/"
            f"{self._config.database}/documents"
        )

    async def _firestore_request(
        self, method: str, path: str, json_body: dict[str, Any] | None = None
    ) -> Any:
        """Issue an authenticated request; returns ``None`` on 404."""
        session = await self._get_session()
        headers = {"Authorization": f"Bearer {await self.id_token()}"}
        url = f"{FIRESTORE_BASE_URL}/{path}"
        async with session.request(method, url, json=json_body, headers=headers) as resp:
            if resp.status == 404:
                return None
            resp.raise_for_status()
            return await resp.json(content_type=None)

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        payload = await self._firestore_request(
            "GET", f"{self.documents_root}/{collection}/{doc_id}"
        )
        if not payload:
            return None
        _, fields = decode_document(payload)
        return fields

    async def set_document(
        self, collection: str, doc_id: str, data: Mapping[str, Any]
    ) -> None:
        await self._firestore_request(
            "PATCH",
            f"{self.documents_root}/{collection}/{doc_id}",
            json_body={"fields": encode_fields(data)},
        )

    async def create_document(self, collection: str, data: Mapping[str, Any]) -> str:
        """Create a document; ``SERVER_TIMESTAMP`` values become request-time transforms."""
        doc_id = auto_id()
        plain = {k: v for k, v in data.items() if v is not SERVER_TIMESTAMP}
        transforms = [
            {"fieldPath": k, "setToServerValue": "REQUEST_TIME"}
            for k, v in data.items()
            if v is SERVER_TIMESTAMP
        ]
        write: dict[str, Any] = {
            "update": {
                "name": f"{self.documents_root}/{collection}/{doc_id}",
                "fields": encode_fields(plain),
            },
            "currentDocument": {"exists": False},
        }
        if transforms:
            write["updateTransforms"] = transforms
        await self._firestore_request(
            "POST", f"{self.documents_root}:commit", json_body={"writes": [write]}
        )
        return doc_id

    async def run_ordered_query(self, collection: str, order_key: str) -> list[RemoteRecord]:
        query = {
            "structuredQuery": {
                "from": [{"collectionId": collection}],
                "orderBy": [{"field": {"fieldPath": order_key}, "direction": "ASCENDING"}],
            }
        }
        rows = await self._firestore_request(
            "POST", f"{self.documents_root}:runQuery", json_body=query
        )
        records: list[RemoteRecord] = []
        for row in rows or []:
            document = row.get("document") if isinstance(row, dict) else None
            if not document:
                continue
            doc_id, fields = decode_document(document)
            records.append(RemoteRecord(id=doc_id, data=fields))
        return records


# ----------------------------------------------------------------------
# Collaborator adapters
# ----------------------------------------------------------------------
class FirebaseIdentityProvider:
    def __init__(self, client: FirebaseClient) -> None:
        self._client = client

    async def login(self, email: str, secret: str) -> AuthUser:
        return await self._client.sign_in_with_password(email, secret)

    async def register(self, email: str, secret: str) -> AuthUser:
        return await self._client.sign_up(email, secret)

    async def sign_out(self) -> None:
        self._client.sign_out()

    def on_identity_changed(self, callback: IdentityListener) -> Unsubscribe:
        return self._client.add_auth_listener(callback)


class FirestoreProfileStore:
    """Profiles live at ``<profiles_collection>/<uid>`` as ``{username, email}``."""

    def __init__(self, client: FirebaseClient, collection: str = "users") -> None:
        self._client = client
        self._collection = collection

    async def get(self, user_id: str) -> Profile | None:
        data = await self._client.get_document(self._collection, user_id)
        if data is None:
            return None
        return Profile(
            display_name=str(data.get("username") or ""), email=data.get("email")
        )

    async def put(self, user_id: str, profile: Profile) -> None:
        await self._client.set_document(
            self._collection,
            user_id,
            {"username": profile.display_name, "email": profile.email},
        )


class FirestoreMessageStore:
    def __init__(
        self,
        client: FirebaseClient,
        collection: str = "messages",
        poll_interval: float = 2.0,
    ) -> None:
        self._client = client
        self._collection = collection
        self._poll_interval = poll_interval
        self._tasks: set[asyncio.Task[None]] = set()

    async def append(self, record: Mapping[str, Any]) -> str:
        try:
            return await self._client.create_document(self._collection, record)
        except (aiohttp.ClientError, asyncio.TimeoutError, AuthError, ValueError) as exc:
            raise SendError(f"Failed to send message: {exc}") from exc

    def subscribe_ordered(self, order_key: str) -> SnapshotStream:
        task: asyncio.Task[None] | None = None

        def _cancel() -> None:
            if task is not None:
                task.cancel()

        stream = SnapshotStream(on_close=_cancel)
        task = asyncio.get_running_loop().create_task(self._poll(stream, order_key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return stream

    async def _poll(self, stream: SnapshotStream, order_key: str) -> None:
        last: list[RemoteRecord] | None = None
        while not stream.closed:
            try:
                records = await self._client.run_ordered_query(self._collection, order_key)
            except (aiohttp.ClientError, asyncio.TimeoutError, AuthError) as exc:
                logger.warning("Message poll failed: %s", exc)
                stream.publish_error(TransientStreamError(str(exc)))
            except Exception as exc:
                logger.error("Unexpected message poll failure: %s", exc, exc_info=True)
                stream.publish_error(TransientStreamError(f"{type(exc).__name__}: {exc}"))
            else:
                if records != last:
                    stream.publish(records)
                    last = records
            await asyncio.sleep(self._poll_interval)
