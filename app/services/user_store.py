"""Lookup and credential persistence for connected users."""

from __future__ import annotations

import logging
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import User
from ..models import UserPreferences

logger = logging.getLogger(__name__)


class UserStore:
    """Key/value style access to the ``users`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_by_id(self, user_id: str) -> User | None:
        async with self._session_factory() as session:
            return await session.get(User, user_id)

    async def update_stored_credential(
        self,
        user_id: str,
        refresh_token: str,
        expires_at: datetime | None = None,
    ) -> None:
        """Persist a rotated refresh token."""

        values: dict[str, object] = {"refresh_token": refresh_token}
        if expires_at is not None:
            # Stored naive, in UTC, like every other timestamp column.
            values["token_expires_at"] = expires_at.replace(tzinfo=None)
        async with self._session_factory() as session:
            await session.execute(update(User).where(User.id == user_id).values(**values))
            await session.commit()

    @staticmethod
    def get_preferences(user: User) -> UserPreferences | None:
        if not user.preferences:
            return None
        try:
            return UserPreferences.model_validate(user.preferences)
        except ValidationError as exc:
            logger.warning("Ignoring malformed preferences for user %s: %s", user.id, exc)
            return None
