"""Catalog definitions and sort options exposed to Stremio."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class CatalogKind(str, Enum):
    """Kinds of collection the addon knows how to aggregate."""

    WATCHLIST = "watchlist"
    DIARY = "diary"
    FRIENDS = "friends"
    LIKED = "liked"
    LIST = "list"
    EXTERNAL_WATCHLIST = "external-watchlist"
    POPULAR = "popular"
    TOP_RATED = "top-rated"


CATALOG_ID_PREFIX = "letterboxd-"
LIST_CATALOG_PREFIX = "letterboxd-list-"
EXTERNAL_WATCHLIST_PREFIX = "letterboxd-watchlist-"


@dataclass(frozen=True)
class CatalogDefinition:
    """Describes a fixed catalog lane shown in Stremio."""

    catalog_id: str
    kind: CatalogKind
    title: str
    preference_key: str
    sortable: bool = True
    personal: bool = True

    def display_name(self, display_name: str | None) -> str:
        if self.personal and display_name:
            return f"{display_name}'s {self.title}"
        return self.title


BASE_CATALOGS: tuple[CatalogDefinition, ...] = (
    CatalogDefinition(
        catalog_id="letterboxd-watchlist",
        kind=CatalogKind.WATCHLIST,
        title="Watchlist",
        preference_key="watchlist",
    ),
    CatalogDefinition(
        catalog_id="letterboxd-diary",
        kind=CatalogKind.DIARY,
        title="Recent Diary",
        preference_key="diary",
    ),
    CatalogDefinition(
        catalog_id="letterboxd-friends",
        kind=CatalogKind.FRIENDS,
        title="Friends Activity",
        preference_key="friends",
        sortable=False,
    ),
    CatalogDefinition(
        catalog_id="letterboxd-liked-films",
        kind=CatalogKind.LIKED,
        title="Liked Films",
        preference_key="liked_films",
    ),
    CatalogDefinition(
        catalog_id="letterboxd-popular",
        kind=CatalogKind.POPULAR,
        title="Popular This Week",
        preference_key="popular",
        personal=False,
    ),
    CatalogDefinition(
        catalog_id="letterboxd-top250",
        kind=CatalogKind.TOP_RATED,
        title="Top 250 Narrative Features",
        preference_key="top250",
        personal=False,
    ),
)

CATALOGS_BY_ID = {definition.catalog_id: definition for definition in BASE_CATALOGS}


SHUFFLE_LABEL = "Shuffle"

SORT_LABEL_TO_API: dict[str, str] = {
    "Recently Added": "DateLatestFirst",
    "Oldest Added": "DateEarliestFirst",
    "Film Name": "FilmName",
    "Release Date (Newest)": "ReleaseDateLatestFirst",
    "Release Date (Oldest)": "ReleaseDateEarliestFirst",
    "Your Rating (High)": "AuthenticatedMemberRatingHighToLow",
    "Your Rating (Low)": "AuthenticatedMemberRatingLowToHigh",
    "Average Rating (High)": "AverageRatingHighToLow",
    "Average Rating (Low)": "AverageRatingLowToHigh",
    "Popularity": "FilmPopularity",
    "Popularity (Week)": "FilmPopularityThisWeek",
    "Popularity (Month)": "FilmPopularityThisMonth",
    "Shortest": "FilmDurationShortestFirst",
    "Longest": "FilmDurationLongestFirst",
}

SORT_OPTIONS: tuple[str, ...] = (*SORT_LABEL_TO_API.keys(), SHUFFLE_LABEL)

# Anonymous requests have no authenticated member to rate against.
PUBLIC_SORT_OPTIONS: tuple[str, ...] = tuple(
    option for option in SORT_OPTIONS if not option.startswith("Your Rating")
)


@dataclass(frozen=True)
class CatalogRef:
    """A parsed catalog id: the kind plus an optional list id or username."""

    kind: CatalogKind
    ref: str | None = None


def parse_catalog_id(catalog_id: str) -> CatalogRef | None:
    """Map a Stremio catalog id to the collection it names."""

    definition = CATALOGS_BY_ID.get(catalog_id)
    if definition is not None:
        return CatalogRef(definition.kind)
    if catalog_id.startswith(LIST_CATALOG_PREFIX):
        list_id = catalog_id[len(LIST_CATALOG_PREFIX):]
        return CatalogRef(CatalogKind.LIST, list_id) if list_id else None
    if catalog_id.startswith(EXTERNAL_WATCHLIST_PREFIX):
        username = catalog_id[len(EXTERNAL_WATCHLIST_PREFIX):]
        return CatalogRef(CatalogKind.EXTERNAL_WATCHLIST, username) if username else None
    return None


def resolve_sort(label: str | None) -> tuple[str | None, bool]:
    """Return the upstream sort enum and whether the label asks for a shuffle."""

    if not label:
        return None, False
    cleaned = label.strip()
    if cleaned == SHUFFLE_LABEL:
        return None, True
    return SORT_LABEL_TO_API.get(cleaned), False
