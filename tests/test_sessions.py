"""Tests for session reuse and refresh-token rotation."""

from __future__ import annotations

import asyncio
from datetime import datetime
from types import SimpleNamespace
from typing import Any

import pytest

from app.cache import TTLCache
from app.services.letterboxd import LetterboxdError, TokenGrant
from app.services.sessions import APP_SESSION_KEY, SessionProvider, session_key


class Clock:
    def __init__(self, now: float = 10_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class StubClient:
    def __init__(self, rotated: str | None = "refresh-2") -> None:
        self.refreshes: list[str] = []
        self.app_grants = 0
        self.rotated = rotated

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        self.refreshes.append(refresh_token)
        return TokenGrant(f"access-{len(self.refreshes)}", self.rotated, 3600)

    async def client_credentials_token(self) -> TokenGrant:
        self.app_grants += 1
        return TokenGrant(f"app-{self.app_grants}", None, 3600)


class StubUserStore:
    def __init__(self, **users: Any) -> None:
        self.users = users
        self.stored: list[tuple[str, str, datetime | None]] = []

    async def find_by_id(self, user_id: str) -> Any:
        return self.users.get(user_id)

    async def update_stored_credential(
        self, user_id: str, refresh_token: str, expires_at: datetime | None = None
    ) -> None:
        self.stored.append((user_id, refresh_token, expires_at))


def build_provider(
    client: StubClient | None = None,
    store: StubUserStore | None = None,
    clock: Clock | None = None,
) -> tuple[SessionProvider, StubClient, StubUserStore, TTLCache[Any], Clock]:
    client = client or StubClient()
    store = store or StubUserStore(
        u1=SimpleNamespace(id="u1", letterboxd_id="m1", refresh_token="refresh-1")
    )
    clock = clock or Clock()
    cache: TTLCache[Any] = TTLCache("session", maxsize=10, ttl=3600, timer=clock)
    provider = SessionProvider(client, store, cache, margin=60, clock=clock)  # type: ignore[arg-type]
    return provider, client, store, cache, clock


def test_refresh_persists_rotated_token_and_caches_handle() -> None:
    provider, client, store, cache, clock = build_provider()

    handle = asyncio.run(provider.get_or_refresh_session("u1"))

    assert handle.access_token == "access-1"
    assert handle.member_id == "m1"
    assert handle.expires_at == clock.now + 3600
    assert client.refreshes == ["refresh-1"]
    assert [(user, token) for user, token, _ in store.stored] == [("u1", "refresh-2")]
    assert cache.get(session_key("u1")) == handle


def test_fresh_session_is_reused() -> None:
    provider, client, _, _, clock = build_provider()

    async def runner() -> None:
        await provider.get_or_refresh_session("u1")
        clock.now += 3600 - 61
        await provider.get_or_refresh_session("u1")

    asyncio.run(runner())

    assert len(client.refreshes) == 1


def test_session_inside_safety_margin_is_refreshed() -> None:
    provider, client, _, _, clock = build_provider()

    async def runner() -> str:
        await provider.get_or_refresh_session("u1")
        clock.now += 3600 - 30
        handle = await provider.get_or_refresh_session("u1")
        return handle.access_token

    assert asyncio.run(runner()) == "access-2"
    assert len(client.refreshes) == 2


def test_unrotated_token_is_not_persisted() -> None:
    provider, _, store, _, _ = build_provider(client=StubClient(rotated=None))

    handle = asyncio.run(provider.get_or_refresh_session("u1"))

    assert handle.refresh_token == "refresh-1"
    assert store.stored == []


def test_unknown_user_raises_key_error() -> None:
    provider, client, _, _, _ = build_provider()

    with pytest.raises(KeyError):
        asyncio.run(provider.get_or_refresh_session("nobody"))
    assert client.refreshes == []


def test_user_without_refresh_token_raises() -> None:
    store = StubUserStore(
        u2=SimpleNamespace(id="u2", letterboxd_id="m2", refresh_token=None)
    )
    provider, _, _, _, _ = build_provider(store=store)

    with pytest.raises(LetterboxdError):
        asyncio.run(provider.get_or_refresh_session("u2"))


def test_with_fresh_session_passes_handle() -> None:
    provider, _, _, _, _ = build_provider()

    async def use(handle: Any) -> str:
        return f"{handle.member_id}:{handle.access_token}"

    assert asyncio.run(provider.with_fresh_session("u1", use)) == "m1:access-1"


def test_app_session_is_cached_separately() -> None:
    provider, client, _, cache, _ = build_provider()

    async def runner() -> None:
        await provider.get_app_session()
        await provider.get_app_session()
        await provider.get_or_refresh_session("u1")

    asyncio.run(runner())

    assert client.app_grants == 1
    assert cache.get(APP_SESSION_KEY).access_token == "app-1"
    assert cache.get(session_key("u1")).access_token == "access-1"
