"""Cached aggregation of Letterboxd collections into Stremio catalogs."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Mapping

from ..cache import CacheRegistry, TTLCache
from ..catalogs import CatalogKind, CatalogRef, parse_catalog_id, resolve_sort
from ..config import Settings
from ..models import CachedCollection, CatalogItem, FilmRatingSnapshot
from .letterboxd import LetterboxdClient, LetterboxdError
from .pagination import Page, fetch_all_pages, gather_in_batches
from .sessions import SessionHandle, SessionProvider
from .streams import build_film_streams
from .transformer import CatalogTransformer

logger = logging.getLogger(__name__)

PER_PAGE = 100
LISTS_PER_PAGE = 50
NAME_LOOKUP_BATCH = 5

# Page caps keep every catalog bounded: lists ~1000 items, diary ~500,
# friends ~300.
PAGE_LIMITS: dict[CatalogKind, int] = {
    CatalogKind.WATCHLIST: 10,
    CatalogKind.EXTERNAL_WATCHLIST: 10,
    CatalogKind.LIST: 10,
    CatalogKind.LIKED: 10,
    CatalogKind.DIARY: 5,
    CatalogKind.FRIENDS: 3,
    CatalogKind.POPULAR: 3,
    CatalogKind.TOP_RATED: 3,
}
USER_LISTS_PAGE_LIMIT = 3

SUBJECTLESS_KINDS = frozenset({CatalogKind.POPULAR, CatalogKind.TOP_RATED})
AUTHENTICATED_ONLY_KINDS = frozenset({CatalogKind.DIARY, CatalogKind.FRIENDS})
MEMBER_SORT_PREFIX = "AuthenticatedMember"


@dataclass(frozen=True)
class Subject:
    """Who a catalog request is scoped to."""

    user_id: str | None = None
    member_id: str | None = None
    username: str | None = None
    display_name: str | None = None

    @classmethod
    def public(cls) -> "Subject":
        return cls()

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def key_prefix(self) -> str:
        if self.user_id:
            return f"user:{self.user_id}:"
        if self.member_id:
            return f"member:{self.member_id}:"
        return "public:"


@dataclass(frozen=True)
class CatalogOptions:
    """Variant dimensions of a catalog request."""

    sort: str | None = None
    shuffle: bool = False
    show_ratings: bool = True

    @classmethod
    def from_label(cls, label: str | None, *, show_ratings: bool = True) -> "CatalogOptions":
        """Build options from the human-readable sort label Stremio sends."""

        sort, shuffle = resolve_sort(label)
        return cls(sort=sort, shuffle=shuffle, show_ratings=show_ratings)


def build_cache_key(subject: Subject, ref: CatalogRef, options: CatalogOptions) -> str:
    """Compose the cache key for a whole collection.

    The skip offset and the shuffle flag are deliberately absent so that every
    page and every shuffled view shares one cached collection.
    """

    prefix = "public:" if ref.kind in SUBJECTLESS_KINDS else subject.key_prefix
    kind = ref.kind.value if ref.ref is None else f"{ref.kind.value}:{ref.ref}"
    ratings = "r1" if options.show_ratings else "r0"
    return f"{prefix}{kind}:{ratings}:{options.sort or 'default'}"


class CatalogService:
    """Serves catalog pages from cache, fetching whole collections on a miss."""

    def __init__(
        self,
        settings: Settings,
        client: LetterboxdClient,
        sessions: SessionProvider,
        caches: CacheRegistry,
        transformer: CatalogTransformer | None = None,
        *,
        rng: random.Random | None = None,
    ):
        self._settings = settings
        self._client = client
        self._sessions = sessions
        self._caches = caches
        self._transformer = transformer or CatalogTransformer(
            caches.imdb_to_letterboxd, settings.public_base_url
        )
        self._random = rng or random.Random()
        self._page_size = settings.catalog_page_size
        self._inflight: dict[str, asyncio.Task[CachedCollection]] = {}
        self._invalidations: dict[str, int] = {}

    @property
    def caches(self) -> CacheRegistry:
        return self._caches

    # -- catalog pages --------------------------------------------------------

    async def get_page(
        self,
        subject: Subject,
        catalog: CatalogRef | str,
        options: CatalogOptions | None = None,
        skip: int = 0,
        page_size: int | None = None,
    ) -> list[CatalogItem]:
        """Return one page of a catalog; failures yield an empty page."""

        options = options or CatalogOptions()
        size = page_size or self._page_size
        ref = parse_catalog_id(catalog) if isinstance(catalog, str) else catalog
        if ref is None:
            logger.warning("Unknown catalog requested: %s", catalog)
            return []
        if ref.kind in AUTHENTICATED_ONLY_KINDS and not subject.is_authenticated:
            logger.warning("Catalog %s requires a connected account", ref.kind.value)
            return []

        try:
            items = await self.get_collection(subject, ref, options)
        except Exception:
            logger.exception(
                "Failed to fetch catalog %s for %s", ref.kind.value, subject.key_prefix
            )
            return []

        if options.shuffle:
            items = list(items)
            self._random.shuffle(items)

        start = max(skip, 0)
        page = items[start:start + size]
        logger.info(
            "Catalog %s: total=%s skip=%s returned=%s",
            ref.kind.value,
            len(items),
            start,
            len(page),
        )
        return page

    async def get_collection(
        self,
        subject: Subject,
        ref: CatalogRef,
        options: CatalogOptions,
    ) -> list[CatalogItem]:
        """Return the full cached collection, loading it on a miss."""

        # Shared and anonymous collections have no member to rank by.
        member_sort = bool(options.sort and options.sort.startswith(MEMBER_SORT_PREFIX))
        if member_sort and (not subject.is_authenticated or ref.kind in SUBJECTLESS_KINDS):
            options = CatalogOptions(shuffle=options.shuffle, show_ratings=options.show_ratings)

        key = build_cache_key(subject, ref, options)
        cache = self._cache_for(subject, ref.kind)
        cached = cache.get(key)
        if cached is not None:
            logger.debug("Catalog cache hit for %s", key)
            return cached.items

        pending = self._inflight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(
                self._load_and_store(cache, key, subject, ref, options)
            )
            self._inflight[key] = pending
            pending.add_done_callback(lambda task: self._forget_inflight(key, task))
        else:
            logger.debug("Joining in-flight fetch for %s", key)
        collection = await asyncio.shield(pending)
        return collection.items

    def _forget_inflight(self, key: str, task: asyncio.Task[CachedCollection]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _load_and_store(
        self,
        cache: TTLCache[CachedCollection],
        key: str,
        subject: Subject,
        ref: CatalogRef,
        options: CatalogOptions,
    ) -> CachedCollection:
        prefix = subject.key_prefix
        generation = self._invalidations.get(prefix, 0)
        if ref.kind in SUBJECTLESS_KINDS or not subject.is_authenticated:
            session = await self._sessions.get_app_session()
        else:
            session = await self._sessions.get_or_refresh_session(subject.user_id)
        items = await self._fetch_items(session, subject, ref, options)
        collection = CachedCollection(items=items)
        # A write that raced with an invalidation must not repopulate the cache.
        if self._invalidations.get(prefix, 0) == generation:
            cache.set(key, collection)
        return collection

    def _cache_for(self, subject: Subject, kind: CatalogKind) -> TTLCache[Any]:
        if kind is CatalogKind.POPULAR:
            return self._caches.popular_catalog
        if kind is CatalogKind.TOP_RATED:
            return self._caches.top250_catalog
        if subject.is_authenticated:
            return self._caches.user_catalog
        if kind in (CatalogKind.WATCHLIST, CatalogKind.EXTERNAL_WATCHLIST):
            return self._caches.public_watchlist
        if kind is CatalogKind.LIKED:
            return self._caches.liked_films
        return self._caches.public_list

    async def _fetch_items(
        self,
        session: SessionHandle,
        subject: Subject,
        ref: CatalogRef,
        options: CatalogOptions,
    ) -> list[CatalogItem]:
        token = session.access_token
        sort = options.sort
        show_ratings = options.show_ratings
        limit = PAGE_LIMITS[ref.kind]
        label = f"{ref.kind.value} ({subject.username or subject.key_prefix})"
        transformer = self._transformer

        def paged(
            fetch: Callable[..., Awaitable[Page]], *args: Any, **kwargs: Any
        ) -> Callable[[str | None], Awaitable[Page]]:
            def _fetch_page(cursor: str | None) -> Awaitable[Page]:
                return fetch(token, *args, cursor=cursor, per_page=PER_PAGE, **kwargs)

            return _fetch_page

        kind = ref.kind
        if kind is CatalogKind.POPULAR:
            films = await fetch_all_pages(
                paged(self._client.get_films, sort=sort or "FilmPopularityThisWeek"),
                max_pages=limit,
                label=label,
            )
            return transformer.films_to_items(films, show_ratings)

        if kind is CatalogKind.TOP_RATED:
            list_id = self._settings.top_rated_list_id
            if not list_id:
                raise LetterboxdError("TOP_RATED_LIST_ID is not configured")
            entries = await fetch_all_pages(
                paged(self._client.get_list_entries, list_id, sort=sort),
                max_pages=limit,
                label=label,
            )
            return transformer.list_entries_to_items(entries, show_ratings)

        if kind is CatalogKind.LIST:
            entries = await fetch_all_pages(
                paged(self._client.get_list_entries, ref.ref, sort=sort),
                max_pages=limit,
                label=label,
            )
            return transformer.list_entries_to_items(entries, show_ratings)

        if kind is CatalogKind.EXTERNAL_WATCHLIST:
            member_id = await self.resolve_member_id(str(ref.ref), session=session)
            if member_id is None:
                raise LetterboxdError(f"Unknown Letterboxd member {ref.ref}")
            films = await fetch_all_pages(
                paged(self._client.get_watchlist, member_id, sort=sort),
                max_pages=limit,
                label=label,
            )
            return transformer.films_to_items(films, show_ratings)

        member_id = subject.member_id or session.member_id
        if not member_id:
            raise LetterboxdError(f"Catalog {kind.value} needs a Letterboxd member")

        if kind is CatalogKind.WATCHLIST:
            films = await fetch_all_pages(
                paged(self._client.get_watchlist, member_id, sort=sort),
                max_pages=limit,
                label=label,
            )
            return transformer.films_to_items(films, show_ratings)

        if kind is CatalogKind.LIKED:
            films = await fetch_all_pages(
                paged(
                    self._client.get_films,
                    sort=sort,
                    member_id=member_id,
                    relationship="Liked",
                ),
                max_pages=limit,
                label=label,
            )
            return transformer.films_to_items(films, show_ratings)

        if kind is CatalogKind.DIARY:
            entries = await fetch_all_pages(
                paged(self._client.get_log_entries, member_id, sort=sort),
                max_pages=limit,
                label=label,
            )
            return transformer.log_entries_to_items(entries, show_ratings)

        if kind is CatalogKind.FRIENDS:
            activity = await fetch_all_pages(
                paged(self._client.get_activity, member_id),
                max_pages=limit,
                label=label,
            )
            return transformer.activity_to_items(activity, member_id, show_ratings)

        raise ValueError(f"Unsupported catalog kind {kind}")

    # -- invalidation ---------------------------------------------------------

    def invalidate(self, user_id: str, member_id: str | None = None) -> int:
        """Drop every cached entry scoped to the user (and their member id)."""

        prefixes = [f"user:{user_id}:"]
        if member_id:
            prefixes.append(f"member:{member_id}:")
        removed = 0
        for prefix in prefixes:
            self._invalidations[prefix] = self._invalidations.get(prefix, 0) + 1
            removed += self._caches.invalidate_prefix(prefix)
            # Later reads must start a fresh fetch rather than join a stale one.
            for key in [key for key in self._inflight if key.startswith(prefix)]:
                del self._inflight[key]
        logger.info("Invalidated %s cached entries for user %s", removed, user_id)
        return removed

    def cache_stats(self) -> dict[str, dict[str, int]]:
        return self._caches.stats()

    # -- mutations and per-film data ------------------------------------------

    async def update_film_relationship(
        self,
        user_id: str,
        film_id: str,
        update: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Write to Letterboxd, then invalidate so the next read is fresh.

        Failures propagate: a swallowed write would misreport the user's state.
        """

        async def _write(session: SessionHandle) -> tuple[dict[str, Any], str | None]:
            result = await self._client.update_film_relationship(
                session.access_token, film_id, update
            )
            return result, session.member_id

        result, member_id = await self._sessions.with_fresh_session(user_id, _write)
        self.invalidate(user_id, member_id)
        return result

    async def get_film_rating(self, user_id: str, film_id: str) -> FilmRatingSnapshot:
        """Fetch the viewer's current relationship to a film.

        Always fetched fresh so a just-made edit shows up immediately; the
        result is kept briefly for reuse by the same view.
        """

        async def _fetch(session: SessionHandle) -> FilmRatingSnapshot:
            relationship, statistics = await asyncio.gather(
                self._client.get_film_relationship(session.access_token, film_id),
                self._client.get_film_statistics(session.access_token, film_id),
            )
            counts = statistics.get("counts") or {}
            return FilmRatingSnapshot(
                film_id=film_id,
                user_rating=relationship.get("rating"),
                watched=bool(relationship.get("watched")),
                liked=bool(relationship.get("liked")),
                in_watchlist=bool(relationship.get("inWatchlist")),
                community_rating=statistics.get("rating"),
                community_ratings=int(counts.get("ratings") or 0),
            )

        snapshot = await self._sessions.with_fresh_session(user_id, _fetch)
        self._caches.user_rating.set(f"user:{user_id}:film:{film_id}", snapshot)
        return snapshot

    async def resolve_film(
        self, session: SessionHandle, imdb_id: str
    ) -> dict[str, Any] | None:
        """Find the Letterboxd film for an IMDb id, preferring the cached mapping."""

        film_id = self._caches.imdb_to_letterboxd.get(imdb_id)
        if film_id:
            cached_film = self._caches.film.get(film_id)
            if cached_film is not None:
                return cached_film
            try:
                film = await self._client.get_film(session.access_token, film_id)
            except LetterboxdError as exc:
                logger.warning(
                    "Cached Letterboxd id %s for %s is invalid: %s", film_id, imdb_id, exc
                )
            else:
                self._caches.film.set(film_id, film)
                return film

        film = await self._client.find_film_by_external_id(session.access_token, imdb_id)
        if film is None or not film.get("id"):
            logger.info("No Letterboxd film found for %s", imdb_id)
            return None
        self._caches.imdb_to_letterboxd.set(imdb_id, str(film["id"]))
        self._caches.film.set(str(film["id"]), film)
        return film

    async def resolve_film_id(self, session: SessionHandle, imdb_id: str) -> str | None:
        cached = self._caches.imdb_to_letterboxd.get(imdb_id)
        if cached:
            return cached
        film = await self.resolve_film(session, imdb_id)
        return str(film["id"]) if film else None

    async def get_film_streams(
        self, user_id: str, imdb_id: str, *, show_actions: bool = True
    ) -> list[dict[str, Any]]:
        """Build the rating/status info streams shown on a film's page.

        Reuses a recent rating snapshot; every mutation invalidates it.
        """

        session = await self._sessions.get_or_refresh_session(user_id)
        film = await self.resolve_film(session, imdb_id)
        if film is None:
            return []
        film_id = str(film["id"])
        snapshot = self._caches.user_rating.get(f"user:{user_id}:film:{film_id}")
        if snapshot is None:
            snapshot = await self.get_film_rating(user_id, film_id)
        return build_film_streams(
            film,
            snapshot,
            imdb_id=imdb_id,
            user_id=user_id,
            base_url=self._settings.public_base_url,
            show_actions=show_actions,
        )

    # -- manifest support -----------------------------------------------------

    async def fetch_user_lists(self, user_id: str, member_id: str) -> list[dict[str, Any]]:
        """Return the member's own lists for dynamic manifest generation."""

        cache_key = f"lists:{member_id}"
        cached = self._caches.user_lists.get(cache_key)
        if cached is not None:
            logger.debug("User lists cache hit for %s", cache_key)
            return cached

        async def _fetch(session: SessionHandle) -> list[dict[str, Any]]:
            return await fetch_all_pages(
                lambda cursor: self._client.get_member_lists(
                    session.access_token,
                    member_id,
                    cursor=cursor,
                    per_page=LISTS_PER_PAGE,
                ),
                max_pages=USER_LISTS_PAGE_LIMIT,
                label="user lists",
            )

        lists = await self._sessions.with_fresh_session(user_id, _fetch)
        self._caches.user_lists.set(cache_key, lists)
        return lists

    async def resolve_member_id(
        self, username: str, *, session: SessionHandle | None = None
    ) -> str | None:
        key = username.strip().casefold()
        cached = self._caches.member_id.get(key)
        if cached is not None:
            return cached
        session = session or await self._sessions.get_app_session()
        member_id = await self._client.find_member_id(session.access_token, username)
        if member_id:
            self._caches.member_id.set(key, member_id)
        return member_id

    async def resolve_list_names(self, list_ids: Iterable[str]) -> dict[str, str]:
        """Look up list names, at most a few upstream calls at a time."""

        wanted = list(dict.fromkeys(list_ids))
        names: dict[str, str] = {}
        missing: list[str] = []
        for list_id in wanted:
            cached = self._caches.list_name.get(list_id)
            if cached is not None:
                names[list_id] = cached
            else:
                missing.append(list_id)
        if not missing:
            return names

        session = await self._sessions.get_app_session()

        async def _lookup(list_id: str) -> tuple[str, str | None]:
            try:
                data = await self._client.get_list(session.access_token, list_id)
            except LetterboxdError as exc:
                logger.warning("Could not resolve list name for %s: %s", list_id, exc)
                return list_id, None
            return list_id, data.get("name")

        for list_id, name in await gather_in_batches(
            missing, _lookup, batch_size=NAME_LOOKUP_BATCH
        ):
            if name:
                self._caches.list_name.set(list_id, name)
                names[list_id] = name
        return names

    async def resolve_display_names(self, usernames: Iterable[str]) -> dict[str, str]:
        """Map usernames to member display names; unknown members are left out."""

        wanted = list(dict.fromkeys(usernames))
        if not wanted:
            return {}
        session = await self._sessions.get_app_session()

        async def _lookup(username: str) -> tuple[str, str | None]:
            try:
                member_id = await self.resolve_member_id(username, session=session)
                if member_id is None:
                    return username, None
                member = await self._client.get_member(session.access_token, member_id)
            except LetterboxdError as exc:
                logger.warning("Could not resolve member %s: %s", username, exc)
                return username, None
            return username, member.get("displayName") or member.get("username")

        results = await gather_in_batches(wanted, _lookup, batch_size=NAME_LOOKUP_BATCH)
        return {username: name for username, name in results if name}
