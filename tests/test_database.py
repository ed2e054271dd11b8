from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from sqlalchemy import create_engine, inspect, text

from app.database import Database
from app.db_models import User
from app.services.user_store import UserStore


def _initialise_legacy_schema(database_path: str) -> None:
    """Create a users table from before preferences and token expiry existed."""

    engine = create_engine(f"sqlite:///{database_path}")
    try:
        with engine.begin() as connection:
            connection.execute(
                text(
                    """
                    CREATE TABLE users (
                        id VARCHAR(32) PRIMARY KEY,
                        letterboxd_id VARCHAR(64) UNIQUE,
                        letterboxd_username VARCHAR(120),
                        letterboxd_display_name VARCHAR(200),
                        refresh_token TEXT,
                        created_at DATETIME,
                        updated_at DATETIME
                    )
                    """
                )
            )
            connection.execute(
                text(
                    "INSERT INTO users (id, letterboxd_id, letterboxd_username) "
                    "VALUES ('legacy', 'm0', 'old-timer')"
                )
            )
    finally:
        engine.dispose()


def test_create_all_adds_missing_user_columns(tmp_path) -> None:
    """Schema migrations should backfill columns added after the first release."""

    database_path = tmp_path / "legacy.db"
    _initialise_legacy_schema(str(database_path))

    database = Database(f"sqlite+aiosqlite:///{database_path}")
    asyncio.run(database.create_all())
    asyncio.run(database.dispose())

    inspector_engine = create_engine(f"sqlite:///{database_path}")
    try:
        inspector = inspect(inspector_engine)
        columns = {column["name"] for column in inspector.get_columns("users")}
        with inspector_engine.connect() as connection:
            tier = connection.execute(
                text("SELECT tier FROM users WHERE id = 'legacy'")
            ).scalar_one()
    finally:
        inspector_engine.dispose()

    assert {"tier", "preferences", "token_expires_at", "last_login_at"} <= columns
    assert tier == 1


def test_user_store_persists_rotated_credentials(tmp_path) -> None:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    store = UserStore(database.session_factory)
    expires = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)

    async def runner() -> User | None:
        await database.create_all()
        async with database.session() as session:
            session.add(
                User(
                    id="u1",
                    letterboxd_id="m1",
                    letterboxd_username="alice",
                    refresh_token="old",
                    preferences={"ownLists": ["l1"], "catalogs": {"diary": False}},
                )
            )
            await session.commit()
        await store.update_stored_credential("u1", "new", expires)
        user = await store.find_by_id("u1")
        await database.dispose()
        return user

    user = asyncio.run(runner())

    assert user is not None
    assert user.refresh_token == "new"
    assert user.token_expires_at == datetime(2030, 1, 1, 12, 0)
    assert user.display_name == "alice"
    preferences = UserStore.get_preferences(user)
    assert preferences is not None
    assert preferences.own_lists == ["l1"]
    assert preferences.catalogs.diary is False


def test_malformed_preferences_are_ignored() -> None:
    user = User(id="u2", letterboxd_id="m2", letterboxd_username="bob", preferences={"ownLists": 5})

    assert UserStore.get_preferences(user) is None
