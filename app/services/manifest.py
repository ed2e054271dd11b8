"""Stremio manifest generation for anonymous, shared and connected installs."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from ..catalogs import (
    BASE_CATALOGS,
    EXTERNAL_WATCHLIST_PREFIX,
    LIST_CATALOG_PREFIX,
    PUBLIC_SORT_OPTIONS,
    SORT_OPTIONS,
    CatalogDefinition,
)
from ..config import Settings
from ..models import UserPreferences
from ..public_config import PublicConfig

MANIFEST_ID = "community.stremboxd"
MANIFEST_VERSION = "1.0.0"


def _extras(sortable: bool, options: Sequence[str]) -> list[dict[str, Any]]:
    extras: list[dict[str, Any]] = []
    if sortable:
        extras.append(
            {"name": "genre", "options": list(options), "isRequired": False, "optionsLimit": 1}
        )
    extras.append({"name": "skip", "isRequired": False})
    return extras


def _catalog(
    catalog_id: str,
    name: str,
    *,
    sortable: bool = True,
    options: Sequence[str] = SORT_OPTIONS,
) -> dict[str, Any]:
    return {
        "type": "movie",
        "id": catalog_id,
        "name": name,
        "extra": _extras(sortable, options),
    }


def _definition_catalog(
    definition: CatalogDefinition,
    display_name: str | None,
    options: Sequence[str] = SORT_OPTIONS,
) -> dict[str, Any]:
    return _catalog(
        definition.catalog_id,
        definition.display_name(display_name),
        sortable=definition.sortable,
        options=options,
    )


def apply_custom_names(
    catalogs: list[dict[str, Any]], names: Mapping[str, str] | None
) -> list[dict[str, Any]]:
    for catalog in catalogs:
        custom = (names or {}).get(catalog["id"])
        if custom:
            catalog["name"] = custom
    return catalogs


def apply_catalog_order(
    catalogs: list[dict[str, Any]], order: Iterable[str] | None
) -> list[dict[str, Any]]:
    """Move ordered catalog ids to the front; everything else keeps its place."""

    positions = {catalog_id: index for index, catalog_id in enumerate(order or [])}
    if not positions:
        return catalogs
    return sorted(
        catalogs,
        key=lambda catalog: positions.get(catalog["id"], len(positions)),
    )


def _manifest(
    settings: Settings,
    *,
    name: str,
    description: str,
    catalogs: list[dict[str, Any]],
    resources: list[Any] | None = None,
    configurable: bool = False,
    background: str = "logo.svg",
) -> dict[str, Any]:
    base = settings.public_base_url
    return {
        "id": MANIFEST_ID,
        "version": MANIFEST_VERSION,
        "name": name,
        "description": description,
        "logo": f"{base}/logo.svg",
        "background": f"{base}/{background}",
        "resources": resources or ["catalog"],
        "types": ["movie"],
        "catalogs": catalogs,
        "behaviorHints": {"configurable": configurable, "configurationRequired": False},
    }


def _user_resources() -> list[Any]:
    return ["catalog", {"name": "stream", "types": ["movie"]}]


def generate_base_manifest(settings: Settings) -> dict[str, Any]:
    """Manifest for installs without any account or config: popular and top 250."""

    catalogs = [
        _definition_catalog(definition, None, PUBLIC_SORT_OPTIONS)
        for definition in BASE_CATALOGS
        if not definition.personal
    ]
    return _manifest(
        settings,
        name=settings.app_name,
        description=(
            "Letterboxd catalogs for Stremio: popular films, top 250, "
            "watchlists, and custom lists."
        ),
        catalogs=catalogs,
        configurable=True,
    )


def generate_public_manifest(
    settings: Settings,
    config: PublicConfig,
    display_name: str | None = None,
    list_names: Mapping[str, str] | None = None,
    watchlist_names: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Manifest for a shared, login-free configuration."""

    toggles = config.catalogs
    catalogs: list[dict[str, Any]] = []
    for definition in BASE_CATALOGS:
        if definition.personal and not config.username:
            continue
        enabled = getattr(toggles, definition.preference_key, False)
        if enabled:
            catalogs.append(_definition_catalog(definition, display_name, PUBLIC_SORT_OPTIONS))

    for list_id in config.list_ids:
        catalogs.append(
            _catalog(
                f"{LIST_CATALOG_PREFIX}{list_id}",
                (list_names or {}).get(list_id) or f"List {list_id}",
                options=PUBLIC_SORT_OPTIONS,
            )
        )
    for username in config.external_watchlists or []:
        owner = (watchlist_names or {}).get(username) or username
        catalogs.append(
            _catalog(
                f"{EXTERNAL_WATCHLIST_PREFIX}{username}",
                f"{owner}'s Watchlist",
                options=PUBLIC_SORT_OPTIONS,
            )
        )

    apply_custom_names(catalogs, config.custom_names)
    catalogs = apply_catalog_order(catalogs, config.catalog_order)
    suffix = f" for {display_name}" if display_name else ""
    return _manifest(
        settings,
        name=f"{settings.app_name}{suffix}",
        description="Letterboxd catalogs for Stremio.",
        catalogs=catalogs,
    )


def generate_manifest(
    settings: Settings, username: str, display_name: str | None = None
) -> dict[str, Any]:
    """Static manifest for a connected user; used when their lists can't be fetched."""

    name = display_name or username
    return _manifest(
        settings,
        name=f"Letterboxd for {name}",
        description=(
            "Your personal Letterboxd ratings and watchlist synced to Stremio. "
            f"Connected as {username}."
        ),
        catalogs=[_definition_catalog(definition, name) for definition in BASE_CATALOGS],
        resources=_user_resources(),
        background="background.jpg",
    )


def generate_dynamic_manifest(
    settings: Settings,
    username: str,
    display_name: str | None,
    lists: Iterable[Mapping[str, Any]],
    preferences: UserPreferences | None = None,
) -> dict[str, Any]:
    """Manifest for a connected user, including their own lists.

    Without stored preferences every base catalog and every list is shown.
    """

    manifest = generate_manifest(settings, username, display_name)
    name = display_name or username
    own_lists = [
        (str(entry["id"]), str(entry.get("name") or entry["id"]))
        for entry in lists
        if entry.get("id")
    ]

    if preferences is None:
        manifest["catalogs"].extend(
            _catalog(f"{LIST_CATALOG_PREFIX}{list_id}", list_name)
            for list_id, list_name in own_lists
        )
        return manifest

    catalogs = [
        _definition_catalog(definition, name)
        for definition in BASE_CATALOGS
        if getattr(preferences.catalogs, definition.preference_key, True)
    ]
    selected = set(preferences.own_lists)
    catalogs.extend(
        _catalog(f"{LIST_CATALOG_PREFIX}{list_id}", list_name)
        for list_id, list_name in own_lists
        if list_id in selected
    )
    catalogs.extend(
        _catalog(f"{LIST_CATALOG_PREFIX}{external.id}", f"{external.name} ({external.owner})")
        for external in preferences.external_lists
    )
    catalogs.extend(
        _catalog(
            f"{EXTERNAL_WATCHLIST_PREFIX}{watchlist.username}",
            f"{watchlist.display_name}'s Watchlist",
        )
        for watchlist in preferences.external_watchlists
    )
    apply_custom_names(catalogs, preferences.catalog_names)
    manifest["catalogs"] = apply_catalog_order(catalogs, preferences.catalog_order)
    return manifest

