"""Identity resolution against in-memory collaborators."""

import pytest

from data.kv_store import InMemoryKeyValueStore
from errors import AuthError
from models import AuthUser, Profile
from remote.memory import InMemoryIdentityProvider, InMemoryProfileStore
from repository import DISPLAY_NAME_KEY, EMAIL_KEY, SECRET_KEY, CredentialCache
from sync.identity import IdentityResolver


def _seed(kv: InMemoryKeyValueStore, **values: str) -> None:
    keys = {"email": EMAIL_KEY, "secret": SECRET_KEY, "name": DISPLAY_NAME_KEY}
    for field, value in values.items():
        kv.data[keys[field]] = value


@pytest.mark.asyncio
async def test_no_cached_credentials_skips_remote(
    resolver: IdentityResolver, provider: InMemoryIdentityProvider, kv: InMemoryKeyValueStore
) -> None:
    _seed(kv, email="a@x.com")

    assert await resolver.resolve_initial_identity() is None
    assert provider.login_calls == 0


@pytest.mark.asyncio
async def test_auto_login_looks_up_and_caches_name(
    resolver: IdentityResolver,
    provider: InMemoryIdentityProvider,
    profiles: InMemoryProfileStore,
    kv: InMemoryKeyValueStore,
) -> None:
    user = provider.add_account("a@x.com", "pw")
    profiles.profiles[user.user_id] = Profile(display_name="Ana", email="a@x.com")
    _seed(kv, email="a@x.com", secret="pw")

    identity = await resolver.resolve_initial_identity()

    assert identity is not None
    assert identity.user_id == user.user_id
    assert identity.display_name == "Ana"
    assert kv.data[DISPLAY_NAME_KEY] == "Ana"


@pytest.mark.asyncio
async def test_auto_login_uses_cached_name_without_lookup(
    resolver: IdentityResolver,
    provider: InMemoryIdentityProvider,
    profiles: InMemoryProfileStore,
    kv: InMemoryKeyValueStore,
) -> None:
    provider.add_account("a@x.com", "pw")
    _seed(kv, email="a@x.com", secret="pw", name="Cached Ana")

    identity = await resolver.resolve_initial_identity()

    assert identity is not None
    assert identity.display_name == "Cached Ana"
    assert profiles.get_calls == 0


@pytest.mark.asyncio
async def test_auto_login_failure_is_swallowed(
    resolver: IdentityResolver, provider: InMemoryIdentityProvider, kv: InMemoryKeyValueStore
) -> None:
    provider.add_account("a@x.com", "new-password")
    _seed(kv, email="a@x.com", secret="old-password")

    assert await resolver.resolve_initial_identity() is None
    assert provider.login_calls == 1
    # stale credentials stay until an explicit logout
    assert kv.data[EMAIL_KEY] == "a@x.com"


@pytest.mark.asyncio
async def test_resolved_identity_matches_direct_login(
    provider: InMemoryIdentityProvider, profiles: InMemoryProfileStore
) -> None:
    user = provider.add_account("a@x.com", "pw")
    profiles.profiles[user.user_id] = Profile(display_name="Ana")

    first_run = IdentityResolver(provider, profiles, CredentialCache(InMemoryKeyValueStore()))
    kv = InMemoryKeyValueStore()
    direct = await IdentityResolver(provider, profiles, CredentialCache(kv)).login("a@x.com", "pw")
    restarted = IdentityResolver(provider, profiles, CredentialCache(kv))

    assert await restarted.resolve_initial_identity() == direct
    assert await first_run.resolve_initial_identity() is None


@pytest.mark.asyncio
async def test_listener_registered_once_and_tracks_sign_out(
    resolver: IdentityResolver, provider: InMemoryIdentityProvider
) -> None:
    provider.add_account("a@x.com", "pw")

    await resolver.resolve_initial_identity()
    await resolver.resolve_initial_identity()
    assert len(provider._listeners) == 1

    await provider.login("a@x.com", "pw")
    assert resolver.observed_user is not None
    await provider.sign_out()
    assert resolver.observed_user is None


@pytest.mark.asyncio
async def test_login_persists_credentials(
    resolver: IdentityResolver, provider: InMemoryIdentityProvider, kv: InMemoryKeyValueStore
) -> None:
    provider.add_account("a@x.com", "pw")

    identity = await resolver.login("  a@x.com ", "pw")

    # no profile stored, so the email stands in for the name
    assert identity.display_name == "a@x.com"
    assert kv.data == {
        EMAIL_KEY: "a@x.com",
        SECRET_KEY: "pw",
        DISPLAY_NAME_KEY: "a@x.com",
    }


@pytest.mark.asyncio
async def test_login_rejects_bad_credentials(
    resolver: IdentityResolver, provider: InMemoryIdentityProvider, kv: InMemoryKeyValueStore
) -> None:
    provider.add_account("a@x.com", "pw")

    with pytest.raises(AuthError):
        await resolver.login("a@x.com", "wrong")
    with pytest.raises(AuthError):
        await resolver.login("   ", "pw")
    assert provider.login_calls == 1
    assert kv.data == {}


@pytest.mark.asyncio
async def test_register_writes_profile_and_cache(
    resolver: IdentityResolver, profiles: InMemoryProfileStore, kv: InMemoryKeyValueStore
) -> None:
    identity = await resolver.register("b@x.com", "secret1", "  Bo ")

    assert identity.display_name == "Bo"
    assert profiles.profiles[identity.user_id] == Profile(display_name="Bo", email="b@x.com")
    assert kv.data[DISPLAY_NAME_KEY] == "Bo"


@pytest.mark.asyncio
async def test_register_existing_email_fails(
    resolver: IdentityResolver, provider: InMemoryIdentityProvider
) -> None:
    provider.add_account("b@x.com", "secret1")

    with pytest.raises(AuthError) as excinfo:
        await resolver.register("b@x.com", "secret1", "Bo")
    assert excinfo.value.code == "EMAIL_EXISTS"


@pytest.mark.asyncio
async def test_register_requires_display_name(
    resolver: IdentityResolver, provider: InMemoryIdentityProvider
) -> None:
    with pytest.raises(AuthError):
        await resolver.register("b@x.com", "secret1", "   ")
    assert provider.accounts == {}


@pytest.mark.asyncio
async def test_register_profile_failure_leaves_orphan_account(
    resolver: IdentityResolver,
    provider: InMemoryIdentityProvider,
    profiles: InMemoryProfileStore,
    kv: InMemoryKeyValueStore,
) -> None:
    profiles.fail_put = ConnectionError("offline")

    with pytest.raises(AuthError):
        await resolver.register("b@x.com", "secret1", "Bo")
    assert "b@x.com" in provider.accounts
    assert kv.data == {}


@pytest.mark.asyncio
async def test_lookup_display_name_fallbacks(
    resolver: IdentityResolver, profiles: InMemoryProfileStore
) -> None:
    profiles.profiles["u1"] = Profile(display_name="Ana")
    profiles.profiles["u2"] = Profile(display_name="  ")

    assert await resolver.lookup_display_name(AuthUser(user_id="u1", email="a@x.com")) == "Ana"
    assert await resolver.lookup_display_name(AuthUser(user_id="u2", email="b@x.com")) == "b@x.com"
    assert await resolver.lookup_display_name(AuthUser(user_id="u3")) == "Anon"


@pytest.mark.asyncio
async def test_lookup_display_name_never_raises(resolver: IdentityResolver) -> None:
    class FailingProfiles:
        async def get(self, user_id: str) -> Profile | None:
            raise ConnectionError("offline")

    resolver._profiles = FailingProfiles()  # type: ignore[assignment]
    assert await resolver.lookup_display_name(AuthUser(user_id="u1", email="a@x.com")) == "a@x.com"


@pytest.mark.asyncio
async def test_logout_clears_cache(
    resolver: IdentityResolver, provider: InMemoryIdentityProvider, kv: InMemoryKeyValueStore
) -> None:
    provider.add_account("a@x.com", "pw")
    await resolver.login("a@x.com", "pw")
    kv.data["chat_history"] = "[]"

    await resolver.logout()

    assert kv.data == {"chat_history": "[]"}
    assert provider.current_user is None


@pytest.mark.asyncio
async def test_failed_sign_out_keeps_cache(
    resolver: IdentityResolver, provider: InMemoryIdentityProvider, kv: InMemoryKeyValueStore
) -> None:
    provider.add_account("a@x.com", "pw")
    await resolver.login("a@x.com", "pw")
    before = dict(kv.data)
    provider.fail_sign_out = ConnectionError("offline")

    with pytest.raises(AuthError):
        await resolver.logout()
    assert kv.data == before
