"""Identity resolution: silent re-login on launch, explicit login/register/logout."""

from __future__ import annotations

import logging

from errors import AuthError
from models import PLACEHOLDER_NAME, AuthUser, Identity, Profile
from remote.base import IdentityProvider, ProfileStore, Unsubscribe
from repository import CredentialCache

log = logging.getLogger(__name__)


class IdentityResolver:
    """Decides which identity the client presents and keeps the cache in step.

    The stored secret is kept in plaintext by the credential cache; callers that
    have a secure keystore should inject a store backed by it.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        profiles: ProfileStore,
        credentials: CredentialCache,
    ) -> None:
        self._provider = provider
        self._profiles = profiles
        self._credentials = credentials
        self._unsubscribe: Unsubscribe | None = None
        self.observed_user: AuthUser | None = None

    # ------------------------------------------------------------------
    async def resolve_initial_identity(self) -> Identity | None:
        """Try the cached credentials; any failure means "not signed in"."""
        try:
            record = await self._credentials.load()
            if not record.has_credentials:
                log.info("No cached credentials, starting signed out")
                return None

            try:
                user = await self._provider.login(record.email or "", record.secret or "")
            except Exception as exc:  # noqa: BLE001
                log.warning("Auto-login failed, falling back to manual login: %s", exc)
                return None

            display_name = record.cached_display_name
            if not display_name:
                display_name = await self.lookup_display_name(user)
                await self._credentials.save_display_name(display_name)

            self.observed_user = user
            log.info("Auto-login OK: uid=%s", user.user_id)
            return Identity(
                user_id=user.user_id, email=user.email or record.email, display_name=display_name
            )
        finally:
            self._watch_identity_changes()

    def _watch_identity_changes(self) -> None:
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self._provider.on_identity_changed(self._on_identity_changed)

    def _on_identity_changed(self, user: AuthUser | None) -> None:
        self.observed_user = user
        log.debug("Remote identity changed: %s", user.user_id if user else None)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ------------------------------------------------------------------
    async def login(self, email: str, secret: str) -> Identity:
        email = email.strip()
        if not email or not secret:
            raise AuthError("Email and password are required")

        user = await self._provider.login(email, secret)
        display_name = await self.lookup_display_name(user)
        await self._credentials.save(email, secret, display_name)
        return Identity(user_id=user.user_id, email=user.email or email, display_name=display_name)

    async def register(self, email: str, secret: str, display_name: str) -> Identity:
        email = email.strip()
        display_name = display_name.strip()
        if not display_name:
            raise AuthError("Display name must not be empty")
        if not email or not secret:
            raise AuthError("Email and password are required")

        user = await self._provider.register(email, secret)
        try:
            await self._profiles.put(user.user_id, Profile(display_name=display_name, email=email))
        except Exception as exc:
            # the account already exists remotely; nothing rolls it back
            log.error("Profile write failed for new account uid=%s: %s", user.user_id, exc)
            if isinstance(exc, AuthError):
                raise
            raise AuthError(f"Account created but profile could not be saved: {exc}") from exc

        await self._credentials.save(email, secret, display_name)
        return Identity(user_id=user.user_id, email=user.email or email, display_name=display_name)

    async def lookup_display_name(self, user: AuthUser) -> str:
        """Profile name, else the account email, else the placeholder."""
        try:
            profile = await self._profiles.get(user.user_id)
        except Exception as exc:  # noqa: BLE001
            log.warning("Profile lookup failed for uid=%s: %s", user.user_id, exc)
            profile = None

        if profile is not None and profile.display_name.strip():
            return profile.display_name
        return user.email or PLACEHOLDER_NAME

    async def logout(self) -> None:
        """Sign out remotely, then forget the cached credentials."""
        try:
            await self._provider.sign_out()
        except AuthError:
            raise
        except Exception as exc:
            raise AuthError(f"Sign-out failed: {exc}") from exc
        await self._credentials.clear()
        log.info("Signed out and cleared cached credentials")
