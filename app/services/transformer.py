"""Mapping of Letterboxd records onto Stremio catalog items."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping
from urllib.parse import quote

from ..cache import TTLCache
from ..models import CatalogItem
from ..utils import format_diary_date, format_stars, truncate

logger = logging.getLogger(__name__)

PREFERRED_POSTER_WIDTH = 300
REVIEW_EXCERPT_LIMIT = 100


class CatalogTransformer:
    """Flattens watchlist, diary, list and activity records into catalog items.

    Every transformed film also records its IMDb id to Letterboxd id mapping so
    later single-film lookups can skip the upstream search.
    """

    def __init__(self, id_mapping: TTLCache[str], public_url: str):
        self._id_mapping = id_mapping
        self._public_url = public_url.rstrip("/")

    # -- single records -------------------------------------------------------

    def film_to_item(
        self,
        film: Mapping[str, Any],
        show_ratings: bool = True,
        *,
        description: str | None = None,
        rating: float | None = None,
    ) -> CatalogItem | None:
        imdb_id = self.imdb_id(film)
        if not imdb_id:
            logger.warning(
                "Film %s (%s) has no IMDb id, skipping", film.get("id"), film.get("name")
            )
            return None

        self.remember_mapping(imdb_id, film)
        poster = self.select_poster(film)
        badge_rating = rating if rating is not None else _as_float(film.get("rating"))
        if show_ratings:
            poster = self.badge_poster_url(poster, badge_rating)

        runtime = film.get("runTime")
        return CatalogItem(
            external_id=imdb_id,
            kind="movie",
            title=str(film.get("name") or imdb_id),
            poster_url=poster,
            release_year=film.get("releaseYear") if isinstance(film.get("releaseYear"), int) else None,
            genres=_names(film.get("genres")),
            directors=_names(film.get("directors")),
            runtime=f"{runtime} min" if isinstance(runtime, int) and runtime > 0 else None,
            description=description,
        )

    def log_entry_to_item(
        self, entry: Mapping[str, Any], show_ratings: bool = True
    ) -> CatalogItem | None:
        film = entry.get("film")
        if not isinstance(film, Mapping):
            return None

        parts: list[str] = []
        if entry.get("like"):
            parts.append("♥ Liked")
        rating = _as_float(entry.get("rating"))
        if rating:
            parts.append(f"My rating {format_stars(rating)}")
        diary_date = entry.get("diaryDate") or (entry.get("diaryDetails") or {}).get("diaryDate")
        if diary_date:
            parts.append(format_diary_date(str(diary_date)))
        description = " · ".join(parts) or None

        review = (entry.get("review") or {}).get("lbml")
        if review:
            excerpt = f'"{truncate(str(review), REVIEW_EXCERPT_LIMIT)}"'
            description = f"{description}\n{excerpt}" if description else excerpt

        return self.film_to_item(film, show_ratings, description=description, rating=rating)

    def list_entry_to_item(
        self, entry: Mapping[str, Any], show_ratings: bool = True
    ) -> CatalogItem | None:
        film = entry.get("film")
        if not isinstance(film, Mapping):
            return None
        rank = entry.get("rank")
        description = f"#{rank}" if rank is not None else None
        return self.film_to_item(film, show_ratings, description=description)

    def activity_item_to_item(
        self, item: Mapping[str, Any], show_ratings: bool = True
    ) -> CatalogItem | None:
        diary = item.get("diaryEntry") if isinstance(item.get("diaryEntry"), Mapping) else None
        film = item.get("film") or (diary or {}).get("film")
        if not isinstance(film, Mapping):
            return None
        return self.film_to_item(
            film, show_ratings, description=self._describe_activity(item, diary)
        )

    @staticmethod
    def _describe_activity(
        item: Mapping[str, Any], diary: Mapping[str, Any] | None
    ) -> str:
        member = item.get("member") or {}
        name = member.get("displayName") or member.get("username") or "someone"
        activity_type = item.get("type")

        if activity_type == "FilmRatingActivity" and item.get("rating"):
            return f"Rated {format_stars(float(item['rating']))} by {name}"
        if activity_type == "WatchlistActivity":
            return f"Added to watchlist by {name}"
        if activity_type == "DiaryEntryActivity":
            diary = diary or {}
            parts: list[str] = []
            if diary.get("like"):
                parts.append("Liked")
            if diary.get("rating"):
                parts.append(f"Rated {format_stars(float(diary['rating']))}")
            parts.append(f"by {name}")
            diary_date = (diary.get("diaryDetails") or {}).get("diaryDate")
            if diary_date:
                parts.append(f"on {diary_date}")
            description = " ".join(parts)
            review = diary.get("review") or {}
            if review.get("lbml") and not review.get("containsSpoilers"):
                description += f'\n"{review["lbml"]}"'
            return description
        return f"Activity by {name}"

    # -- batches --------------------------------------------------------------

    def films_to_items(
        self, films: Iterable[Mapping[str, Any]], show_ratings: bool = True
    ) -> list[CatalogItem]:
        return self._collect(films, lambda film: self.film_to_item(film, show_ratings))

    def log_entries_to_items(
        self, entries: Iterable[Mapping[str, Any]], show_ratings: bool = True
    ) -> list[CatalogItem]:
        return self._collect(entries, lambda entry: self.log_entry_to_item(entry, show_ratings))

    def list_entries_to_items(
        self, entries: Iterable[Mapping[str, Any]], show_ratings: bool = True
    ) -> list[CatalogItem]:
        return self._collect(entries, lambda entry: self.list_entry_to_item(entry, show_ratings))

    def activity_to_items(
        self,
        items: Iterable[Mapping[str, Any]],
        exclude_member_id: str | None,
        show_ratings: bool = True,
    ) -> list[CatalogItem]:
        """Transform a friends feed, skipping the viewer's own activity."""

        def _transform(item: Mapping[str, Any]) -> CatalogItem | None:
            member = item.get("member") or {}
            if exclude_member_id and member.get("id") == exclude_member_id:
                return None
            return self.activity_item_to_item(item, show_ratings)

        return self._collect(items, _transform)

    @staticmethod
    def _collect(
        records: Iterable[Mapping[str, Any]],
        transform: Callable[[Mapping[str, Any]], CatalogItem | None],
    ) -> list[CatalogItem]:
        items: list[CatalogItem] = []
        seen: set[str] = set()
        total = 0
        for record in records:
            total += 1
            item = transform(record)
            if item is None or item.external_id in seen:
                continue
            seen.add(item.external_id)
            items.append(item)
        logger.debug("Transformed %s of %s records into catalog items", len(items), total)
        return items

    # -- helpers --------------------------------------------------------------

    @staticmethod
    def imdb_id(film: Mapping[str, Any]) -> str | None:
        for link in film.get("links") or []:
            if isinstance(link, Mapping) and link.get("type") == "imdb" and link.get("id"):
                return str(link["id"])
        return None

    def remember_mapping(self, imdb_id: str, film: Mapping[str, Any]) -> None:
        film_id = film.get("id")
        if film_id:
            self._id_mapping.set(imdb_id, str(film_id))

    @staticmethod
    def select_poster(film: Mapping[str, Any]) -> str | None:
        """Pick the 300px wide poster, falling back to the largest available."""

        sizes = [
            size
            for size in (film.get("poster") or {}).get("sizes") or []
            if isinstance(size, Mapping) and size.get("url")
        ]
        if not sizes:
            return None
        for size in sizes:
            if size.get("width") == PREFERRED_POSTER_WIDTH:
                return str(size["url"])
        largest = max(sizes, key=lambda size: size.get("width") or 0)
        return str(largest["url"])

    def badge_poster_url(self, poster: str | None, rating: float | None) -> str | None:
        if not poster or not rating:
            return poster
        return f"{self._public_url}/poster?url={quote(poster, safe='')}&rating={rating:.1f}"


def _names(values: Any) -> list[str] | None:
    if not isinstance(values, list):
        return None
    names = [str(value["name"]) for value in values if isinstance(value, Mapping) and value.get("name")]
    return names or None


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
