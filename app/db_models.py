"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

import secrets
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


def _new_user_id() -> str:
    return secrets.token_hex(16)


class User(Base):
    """A Letterboxd member who connected the addon."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_user_id)
    letterboxd_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    letterboxd_username: Mapped[str] = mapped_column(String(120), index=True)
    letterboxd_display_name: Mapped[str | None] = mapped_column(
        String(200), nullable=True
    )
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    preferences: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    tier: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    @property
    def display_name(self) -> str:
        return self.letterboxd_display_name or self.letterboxd_username
