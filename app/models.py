"""Pydantic models describing catalog payloads and stored preferences."""

from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

ContentType = Literal["movie"]


class CatalogItem(BaseModel):
    """Represents a single film entry returned to Stremio."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    external_id: str = Field(validation_alias=AliasChoices("external_id", "id", "imdbId"))
    kind: ContentType = Field(default="movie", validation_alias=AliasChoices("kind", "type"))
    title: str = Field(validation_alias=AliasChoices("title", "name"))
    poster_url: str | None = Field(
        default=None, validation_alias=AliasChoices("poster_url", "poster")
    )
    release_year: int | None = Field(
        default=None, validation_alias=AliasChoices("release_year", "year")
    )
    genres: list[str] | None = None
    directors: list[str] | None = Field(
        default=None, validation_alias=AliasChoices("directors", "director")
    )
    runtime: str | None = None
    description: str | None = None

    def to_meta(self) -> dict[str, object]:
        """Return a Stremio-compatible meta object for catalog listings."""

        meta: dict[str, object] = {
            "id": self.external_id,
            "type": self.kind,
            "name": self.title,
        }
        if self.poster_url:
            meta["poster"] = self.poster_url
        if self.release_year:
            meta["year"] = self.release_year
        if self.genres:
            meta["genres"] = list(self.genres)
        if self.directors:
            meta["director"] = list(self.directors)
        if self.runtime:
            meta["runtime"] = self.runtime
        if self.description:
            meta["description"] = self.description
        return meta


class CachedCollection(BaseModel):
    """A fully transformed catalog held in one cache entry."""

    items: list[CatalogItem] = Field(default_factory=list)


class FilmRatingSnapshot(BaseModel):
    """The viewer's relationship to a film plus community stats."""

    film_id: str
    user_rating: float | None = None
    watched: bool = False
    liked: bool = False
    in_watchlist: bool = False
    community_rating: float | None = None
    community_ratings: int = 0


class CatalogToggles(BaseModel):
    """Per-catalog enable flags stored with a user's preferences."""

    model_config = ConfigDict(populate_by_name=True)

    watchlist: bool = True
    diary: bool = True
    friends: bool = True
    popular: bool = True
    top250: bool = True
    liked_films: bool = Field(default=True, alias="likedFilms")


class ExternalList(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    owner: str
    film_count: int = Field(default=0, alias="filmCount")


class ExternalWatchlist(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str
    display_name: str = Field(alias="displayName")


class UserPreferences(BaseModel):
    """Stored catalog preferences for an authenticated user."""

    model_config = ConfigDict(populate_by_name=True)

    catalogs: CatalogToggles = Field(default_factory=CatalogToggles)
    own_lists: list[str] = Field(default_factory=list, alias="ownLists")
    external_lists: list[ExternalList] = Field(
        default_factory=list, alias="externalLists"
    )
    external_watchlists: list[ExternalWatchlist] = Field(
        default_factory=list, alias="externalWatchlists"
    )
    show_actions: bool = Field(default=True, alias="showActions")
    show_ratings: bool = Field(default=True, alias="showRatings")
    catalog_names: dict[str, str] = Field(default_factory=dict, alias="catalogNames")
    catalog_order: list[str] = Field(default_factory=list, alias="catalogOrder")
