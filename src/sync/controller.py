"""Top-level session coordinator consumed by UI and CLI front-ends."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from errors import SendError
from models import PLACEHOLDER_NAME, Identity, Message, MessageKind, build_image_payload
from repository import DISPLAY_NAME_KEY, CredentialCache
from sync.identity import IdentityResolver
from sync.reconciler import SnapshotCallback, StreamReconciler, Subscription

log = logging.getLogger(__name__)


class SessionState(str, Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


class View(str, Enum):
    LOGIN = "login"
    CHAT = "chat"


@dataclass(frozen=True)
class NavigationIntent:
    view: View
    display_name: str | None = None


StateListener = Callable[[SessionState], None]


class SessionController:
    """Owns the session state machine and wires sync output to the UI."""

    def __init__(
        self,
        resolver: IdentityResolver,
        reconciler: StreamReconciler,
        credentials: CredentialCache,
    ) -> None:
        self._resolver = resolver
        self._reconciler = reconciler
        self._credentials = credentials
        self._subscription: Subscription | None = None
        self._listeners: list[StateListener] = []
        self.state = SessionState.LOADING
        self.identity: Identity | None = None
        self.display_name: str | None = None

    @property
    def loading(self) -> bool:
        return self.state is SessionState.LOADING

    @property
    def messages(self) -> list[Message]:
        return self._reconciler.messages

    def add_listener(self, callback: StateListener) -> None:
        self._listeners.append(callback)

    def _set_state(self, state: SessionState) -> None:
        if state is self.state:
            return
        log.debug("Session state %s -> %s", self.state.value, state.value)
        self.state = state
        for listener in list(self._listeners):
            listener(state)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------
    async def start(self) -> NavigationIntent:
        """Resolve the launch identity and pick the first view."""
        self._set_state(SessionState.LOADING)
        identity = await self._resolver.resolve_initial_identity()
        if identity is None:
            self._set_state(SessionState.UNAUTHENTICATED)
            return NavigationIntent(View.LOGIN)
        return await self._activate(identity)

    async def login(self, email: str, secret: str) -> NavigationIntent:
        identity = await self._resolver.login(email, secret)
        return await self._activate(identity)

    async def register(self, email: str, secret: str, display_name: str) -> NavigationIntent:
        identity = await self._resolver.register(email, secret, display_name)
        return await self._activate(identity)

    async def logout(self) -> NavigationIntent:
        await self._resolver.logout()
        self._stop_stream()
        self.identity = None
        self.display_name = None
        self._set_state(SessionState.UNAUTHENTICATED)
        return NavigationIntent(View.LOGIN)

    async def forget_credentials(self) -> None:
        """Drop cached credentials without a remote sign-out.

        For when there is no live session to end, e.g. the cached secret was
        revoked and auto-login failed. Message history is kept.
        """
        await self._credentials.clear()
        log.info("Cached credentials cleared")

    async def _activate(self, identity: Identity) -> NavigationIntent:
        name = identity.display_name.strip()
        if name:
            await self._credentials.save_display_name(name)
        else:
            name = await self._credentials.get(DISPLAY_NAME_KEY) or PLACEHOLDER_NAME

        self.identity = identity
        self.display_name = name
        self._set_state(SessionState.AUTHENTICATED)
        log.info("Session active for %s", name)
        return NavigationIntent(View.CHAT, display_name=name)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------
    async def subscribe_messages(self, callback: SnapshotCallback) -> Subscription:
        """Paint cached history, then follow the live stream."""
        if self.identity is None:
            raise RuntimeError("Cannot subscribe to messages without an active identity")

        cached = await self._reconciler.bootstrap()
        if cached:
            result = callback(cached)
            if inspect.isawaitable(result):
                await result

        self._subscription = self._reconciler.subscribe(callback)
        return self._subscription

    def _stop_stream(self) -> None:
        if self._subscription is not None:
            self._subscription.dispose()
            self._subscription = None

    def _sender(self) -> tuple[Identity, str]:
        if self.identity is None or not self.display_name:
            raise SendError("Display name is not ready yet, try again shortly")
        return self.identity, self.display_name

    async def send_text_message(self, text: str) -> bool:
        """Send ``text``; returns False when there was nothing to send."""
        trimmed = text.strip()
        if not trimmed:
            return False
        identity, name = self._sender()
        await self._reconciler.send(identity, name, MessageKind.TEXT, trimmed)
        return True

    async def send_image_message(
        self, payload: bytes | str, mime_type: str = "image/jpeg"
    ) -> None:
        if not payload:
            raise SendError("Image payload is empty")
        identity, name = self._sender()
        await self._reconciler.send(
            identity, name, MessageKind.IMAGE, build_image_payload(payload, mime_type)
        )

    async def shutdown(self) -> None:
        self._stop_stream()
        self._reconciler.close()
        self._resolver.close()
