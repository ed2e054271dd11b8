"""Tests for Stremio manifest generation."""

from __future__ import annotations

from app.config import Settings
from app.models import UserPreferences
from app.public_config import PublicCatalogToggles, PublicConfig
from app.services.manifest import (
    MANIFEST_ID,
    generate_base_manifest,
    generate_dynamic_manifest,
    generate_manifest,
    generate_public_manifest,
)

SETTINGS = Settings(_env_file=None, PUBLIC_URL="https://addon.example.com")
LISTS = [{"id": "l1", "name": "Noir"}, {"id": "l2", "name": "Comfort"}]


def _ids(manifest: dict) -> list[str]:
    return [catalog["id"] for catalog in manifest["catalogs"]]


def _sort_options(catalog: dict) -> list[str] | None:
    for extra in catalog["extra"]:
        if extra["name"] == "genre":
            return extra["options"]
    return None


def test_base_manifest_lists_shared_catalogs_with_public_sorts() -> None:
    manifest = generate_base_manifest(SETTINGS)

    assert manifest["id"] == MANIFEST_ID
    assert manifest["resources"] == ["catalog"]
    assert manifest["logo"] == "https://addon.example.com/logo.svg"
    assert _ids(manifest) == ["letterboxd-popular", "letterboxd-top250"]
    options = _sort_options(manifest["catalogs"][0])
    assert options is not None
    assert "Shuffle" in options
    assert "Your Rating (High)" not in options
    assert manifest["behaviorHints"]["configurable"] is True


def test_static_manifest_names_catalogs_after_user() -> None:
    manifest = generate_manifest(SETTINGS, "alice", "Alice")

    assert manifest["name"] == "Letterboxd for Alice"
    names = {catalog["id"]: catalog["name"] for catalog in manifest["catalogs"]}
    assert names["letterboxd-watchlist"] == "Alice's Watchlist"
    assert names["letterboxd-popular"] == "Popular This Week"
    friends = next(c for c in manifest["catalogs"] if c["id"] == "letterboxd-friends")
    assert _sort_options(friends) is None
    assert {"name": "stream", "types": ["movie"]} in manifest["resources"]


def test_dynamic_manifest_without_preferences_includes_every_list() -> None:
    manifest = generate_dynamic_manifest(SETTINGS, "alice", None, LISTS)

    assert _ids(manifest)[-2:] == ["letterboxd-list-l1", "letterboxd-list-l2"]
    assert manifest["catalogs"][0]["name"] == "alice's Watchlist"


def test_dynamic_manifest_respects_preferences() -> None:
    preferences = UserPreferences.model_validate(
        {
            "catalogs": {"diary": False, "friends": False, "popular": False, "top250": False},
            "ownLists": ["l2"],
            "externalLists": [{"id": "x9", "name": "Giallo", "owner": "bob"}],
            "externalWatchlists": [{"username": "carol", "displayName": "Carol"}],
            "catalogNames": {"letterboxd-list-l2": "Cozy"},
            "catalogOrder": ["letterboxd-watchlist-carol", "letterboxd-list-l2"],
        }
    )

    manifest = generate_dynamic_manifest(SETTINGS, "alice", "Alice", LISTS, preferences)

    assert _ids(manifest) == [
        "letterboxd-watchlist-carol",
        "letterboxd-list-l2",
        "letterboxd-watchlist",
        "letterboxd-liked-films",
        "letterboxd-list-x9",
    ]
    names = {catalog["id"]: catalog["name"] for catalog in manifest["catalogs"]}
    assert names["letterboxd-list-l2"] == "Cozy"
    assert names["letterboxd-list-x9"] == "Giallo (bob)"
    assert names["letterboxd-watchlist-carol"] == "Carol's Watchlist"


def test_public_manifest_uses_resolved_names() -> None:
    config = PublicConfig(
        username="alice",
        catalogs=PublicCatalogToggles(watchlist=True, popular=True, top250=False, liked_films=True),
        list_ids=["l1", "l3"],
        show_ratings=True,
        external_watchlists=["bob"],
        custom_names={"letterboxd-popular": "Trending"},
    )

    manifest = generate_public_manifest(
        SETTINGS, config, "Alice", {"l1": "Noir"}, {"bob": "Bobby"}
    )

    assert manifest["name"] == "Stremboxd for Alice"
    names = {catalog["id"]: catalog["name"] for catalog in manifest["catalogs"]}
    assert names == {
        "letterboxd-watchlist": "Alice's Watchlist",
        "letterboxd-liked-films": "Alice's Liked Films",
        "letterboxd-popular": "Trending",
        "letterboxd-list-l1": "Noir",
        "letterboxd-list-l3": "List l3",
        "letterboxd-watchlist-bob": "Bobby's Watchlist",
    }
    for catalog in manifest["catalogs"]:
        assert "Your Rating (Low)" not in (_sort_options(catalog) or [])


def test_public_manifest_without_username_skips_personal_catalogs() -> None:
    config = PublicConfig(
        catalogs=PublicCatalogToggles(popular=True, top250=True, liked_films=True),
        list_ids=[],
        show_ratings=True,
    )

    manifest = generate_public_manifest(SETTINGS, config)

    assert _ids(manifest) == ["letterboxd-popular", "letterboxd-top250"]
    assert manifest["name"] == "Stremboxd"
