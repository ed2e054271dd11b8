"""Named in-memory caches shared by the catalog services."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, fields
from typing import Any, Callable, Generic, Hashable, Iterator, TypeVar

from cachetools import TTLCache as _BoundedTTLCache

from .config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR


class TTLCache(Generic[T]):
    """Bounded key/value store with per-entry expiry.

    Entries past their TTL behave as misses. When the cache is full the least
    recently used entry is evicted first.
    """

    def __init__(
        self,
        name: str,
        *,
        maxsize: int,
        ttl: float,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.ttl = ttl
        self._cache: _BoundedTTLCache[str, T] = _BoundedTTLCache(
            maxsize=maxsize, ttl=ttl, timer=timer
        )

    def get(self, key: str) -> T | None:
        return self._cache.get(key)

    def set(self, key: str, value: T) -> T:
        self._cache[key] = value
        return value

    def delete(self, key: str) -> bool:
        return self._cache.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove all keys starting with *prefix* and return how many went."""

        self._cache.expire()
        doomed = [key for key in self._cache if key.startswith(prefix)]
        for key in doomed:
            self._cache.pop(key, None)
        return len(doomed)

    def clear(self) -> None:
        self._cache.clear()

    def keys(self) -> Iterator[str]:
        self._cache.expire()
        return iter(list(self._cache.keys()))

    @property
    def size(self) -> int:
        self._cache.expire()
        return self._cache.currsize

    @property
    def max(self) -> int:
        return int(self._cache.maxsize)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._cache

    def __len__(self) -> int:
        return self.size


@dataclass
class CacheRegistry:
    """One cache instance per resource class, built once at start-up."""

    film: TTLCache[Any]
    user_rating: TTLCache[Any]
    imdb_to_letterboxd: TTLCache[str]
    user_lists: TTLCache[Any]
    user_catalog: TTLCache[Any]
    popular_catalog: TTLCache[Any]
    top250_catalog: TTLCache[Any]
    member_id: TTLCache[str]
    public_watchlist: TTLCache[Any]
    public_list: TTLCache[Any]
    list_name: TTLCache[str]
    liked_films: TTLCache[Any]
    poster: TTLCache[bytes]
    session: TTLCache[Any]

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        timer: Callable[[], float] = time.monotonic,
    ) -> "CacheRegistry":
        size = settings.cache_max_size
        short = settings.cache_watchlist_ttl

        def build(name: str, ttl: float, maxsize: int = size) -> TTLCache[Any]:
            return TTLCache(name, maxsize=maxsize, ttl=ttl, timer=timer)

        return cls(
            film=build("film", settings.cache_film_ttl),
            user_rating=build("userRating", 5 * MINUTE),
            imdb_to_letterboxd=build("imdbToLetterboxd", HOUR),
            user_lists=build("userLists", 5 * MINUTE),
            user_catalog=build("userCatalog", short),
            popular_catalog=build("popularCatalog", DAY),
            top250_catalog=build("top250Catalog", DAY),
            member_id=build("memberId", DAY),
            public_watchlist=build("publicWatchlist", short),
            public_list=build("publicList", short),
            list_name=build("listName", DAY),
            liked_films=build("likedFilms", 5 * MINUTE),
            poster=build("poster", HOUR, maxsize=500),
            session=build("session", HOUR),
        )

    def caches(self) -> list[TTLCache[Any]]:
        return [getattr(self, field.name) for field in fields(self)]

    def stats(self) -> dict[str, dict[str, int]]:
        return {cache.name: {"size": cache.size, "max": cache.max} for cache in self.caches()}

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop matching keys from every cache instance."""

        removed = 0
        for cache in self.caches():
            removed += cache.invalidate_prefix(prefix)
        if removed:
            logger.debug("Invalidated %s cache entries under %s", removed, prefix)
        return removed
