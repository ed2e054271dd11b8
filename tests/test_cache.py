"""Behaviour of the named TTL caches and the shared registry."""

from __future__ import annotations

from app.cache import CacheRegistry, TTLCache
from app.config import Settings


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache: TTLCache[str] = TTLCache("film", maxsize=10, ttl=60, timer=clock)

    assert cache.set("a", "value") == "value"
    clock.advance(59)
    assert cache.get("a") == "value"
    clock.advance(2)
    assert cache.get("a") is None
    assert cache.size == 0


def test_least_recently_used_entry_is_evicted_first() -> None:
    cache: TTLCache[int] = TTLCache("film", maxsize=2, ttl=60, timer=FakeClock())

    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")
    cache.set("c", 3)

    assert "a" in cache
    assert "b" not in cache
    assert cache.size == 2
    assert cache.max == 2


def test_invalidate_prefix_only_touches_matching_keys() -> None:
    cache: TTLCache[int] = TTLCache("userCatalog", maxsize=10, ttl=60, timer=FakeClock())
    cache.set("user:1:watchlist:r1:default", 1)
    cache.set("user:1:diary:r1:default", 2)
    cache.set("user:10:watchlist:r1:default", 3)

    removed = cache.invalidate_prefix("user:1:")

    assert removed == 2
    assert list(cache.keys()) == ["user:10:watchlist:r1:default"]


def test_delete_reports_whether_key_existed() -> None:
    cache: TTLCache[int] = TTLCache("film", maxsize=10, ttl=60, timer=FakeClock())
    cache.set("a", 1)

    assert cache.delete("a") is True
    assert cache.delete("a") is False


def test_registry_stats_cover_every_instance() -> None:
    settings = Settings(_env_file=None, CACHE_MAX_SIZE=50)
    registry = CacheRegistry.from_settings(settings, timer=FakeClock())
    registry.film.set("film-1", {"id": "film-1"})

    stats = registry.stats()

    assert stats["film"] == {"size": 1, "max": 50}
    assert stats["poster"]["max"] == 500
    assert set(stats) == {
        "film",
        "userRating",
        "imdbToLetterboxd",
        "userLists",
        "userCatalog",
        "popularCatalog",
        "top250Catalog",
        "memberId",
        "publicWatchlist",
        "publicList",
        "listName",
        "likedFilms",
        "poster",
        "session",
    }


def test_registry_prefix_invalidation_spares_sessions() -> None:
    registry = CacheRegistry.from_settings(Settings(_env_file=None), timer=FakeClock())
    registry.user_catalog.set("user:u1:watchlist:r1:default", "catalog")
    registry.user_rating.set("user:u1:film:f1", "rating")
    registry.session.set("session:user:u1", "session")

    removed = registry.invalidate_prefix("user:u1:")

    assert removed == 2
    assert registry.session.get("session:user:u1") == "session"
