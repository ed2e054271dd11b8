"""Cached, ready-to-use Letterboxd credentials per user."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, TypeVar

from ..cache import TTLCache
from .letterboxd import LetterboxdClient, LetterboxdError
from .user_store import UserStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

APP_SESSION_KEY = "session:app"


@dataclass(frozen=True, slots=True)
class SessionHandle:
    """An access token usable for calls on behalf of one member."""

    user_id: str | None
    member_id: str | None
    access_token: str
    refresh_token: str | None
    expires_at: float

    def is_fresh(self, now: float, margin: float) -> bool:
        return self.expires_at - margin > now


def session_key(user_id: str) -> str:
    return f"session:user:{user_id}"


class SessionProvider:
    """Hands out sessions that were valid at acquisition time.

    A cached handle is reused while its expiry is more than ``margin`` seconds
    away; otherwise the stored refresh token is exchanged, the rotated token is
    persisted and the cache entry is replaced.
    """

    def __init__(
        self,
        client: LetterboxdClient,
        user_store: UserStore,
        cache: TTLCache[SessionHandle],
        *,
        margin: float = 60,
        clock: Callable[[], float] = time.time,
    ):
        self._client = client
        self._users = user_store
        self._cache = cache
        self._margin = margin
        self._clock = clock

    async def get_or_refresh_session(self, user_id: str) -> SessionHandle:
        key = session_key(user_id)
        cached = self._cache.get(key)
        now = self._clock()
        if cached is not None and cached.is_fresh(now, self._margin):
            logger.debug("Session cache hit for user %s", user_id)
            return cached

        user = await self._users.find_by_id(user_id)
        if user is None:
            raise KeyError(f"User {user_id} not found")
        if not user.refresh_token:
            raise LetterboxdError(f"User {user_id} has no stored refresh token")

        grant = await self._client.refresh_access_token(user.refresh_token)
        now = self._clock()
        rotated = grant.refresh_token or user.refresh_token
        if rotated != user.refresh_token:
            await self._users.update_stored_credential(
                user_id,
                rotated,
                datetime.now(timezone.utc) + timedelta(seconds=grant.expires_in),
            )

        handle = SessionHandle(
            user_id=user_id,
            member_id=user.letterboxd_id,
            access_token=grant.access_token,
            refresh_token=rotated,
            expires_at=now + grant.expires_in,
        )
        self._cache.set(key, handle)
        logger.info("Refreshed Letterboxd session for user %s", user_id)
        return handle

    async def with_fresh_session(
        self, user_id: str, fn: Callable[[SessionHandle], Awaitable[T]]
    ) -> T:
        """Acquire a session for ``user_id`` and run ``fn`` with it."""

        handle = await self.get_or_refresh_session(user_id)
        return await fn(handle)

    async def get_app_session(self) -> SessionHandle:
        """Return an app-level session for catalogs that need no member."""

        cached = self._cache.get(APP_SESSION_KEY)
        now = self._clock()
        if cached is not None and cached.is_fresh(now, self._margin):
            return cached

        grant = await self._client.client_credentials_token()
        handle = SessionHandle(
            user_id=None,
            member_id=None,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=self._clock() + grant.expires_in,
        )
        self._cache.set(APP_SESSION_KEY, handle)
        logger.info("Obtained app-level Letterboxd session")
        return handle
