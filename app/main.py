"""Entry point for the FastAPI-powered Stremio addon."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any
from urllib.parse import urlparse

import httpx
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from .cache import CacheRegistry
from .catalogs import CatalogKind, parse_catalog_id
from .config import settings
from .database import Database
from .db_models import User
from .public_config import PublicConfig, decode_config
from .services.catalog_service import CatalogOptions, CatalogService, Subject
from .services.letterboxd import LetterboxdClient, LetterboxdError
from .services.manifest import (
    generate_base_manifest,
    generate_dynamic_manifest,
    generate_manifest,
    generate_public_manifest,
)
from .services.sessions import SessionProvider
from .services.user_store import UserStore
from .utils import coerce_skip, parse_extra

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app: FastAPI

TOGGLE_ACTIONS = {
    "watched": ("watched", "Marked as watched", "Removed from watched"),
    "liked": ("liked", "Liked", "Unliked"),
    "watchlist": ("inWatchlist", "Added to watchlist", "Removed from watchlist"),
}
POSTER_HOST_SUFFIX = "ltrbxd.com"


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    letterboxd_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.letterboxd_api_url).rstrip("/"),
            timeout=httpx.Timeout(20.0, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    caches = CacheRegistry.from_settings(settings)
    client = LetterboxdClient(settings, letterboxd_http)
    user_store = UserStore(database.session_factory)
    sessions = SessionProvider(
        client,
        user_store,
        caches.session,
        margin=settings.session_refresh_margin,
    )
    catalog_service = CatalogService(settings, client, sessions, caches)

    app.state.catalog_service = catalog_service
    app.state.user_store = user_store
    app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Letterboxd watchlists, diaries and lists as Stremio catalogs",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_catalog_service(app: FastAPI) -> CatalogService:
    service = getattr(app.state, "catalog_service", None)
    if not isinstance(service, CatalogService):
        raise RuntimeError("Catalog service not initialised")
    return service


def get_user_store(app: FastAPI) -> UserStore:
    store = getattr(app.state, "user_store", None)
    if not isinstance(store, UserStore):
        raise RuntimeError("User store not initialised")
    return store


def register_routes(fastapi_app: FastAPI) -> None:
    async def _require_user(user_id: str) -> User:
        user = await get_user_store(fastapi_app).find_by_id(user_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        return user

    def _decode_public_config(raw: str) -> PublicConfig:
        config = decode_config(raw)
        if config is None:
            raise HTTPException(status_code=400, detail="Invalid configuration")
        return config

    async def _catalog_response(
        subject: Subject,
        content_type: str,
        catalog_id: str,
        extra: str | None,
        *,
        show_ratings: bool,
    ) -> JSONResponse:
        if content_type != "movie":
            return JSONResponse({"metas": []})
        service = get_catalog_service(fastapi_app)
        params = parse_extra(extra)
        options = CatalogOptions.from_label(params.get("genre"), show_ratings=show_ratings)
        items = await service.get_page(
            subject,
            catalog_id,
            options,
            skip=coerce_skip(params.get("skip")),
        )
        return JSONResponse({"metas": [item.to_meta() for item in items]})

    async def _public_subject(config: PublicConfig) -> Subject:
        if not config.username:
            return Subject.public()
        service = get_catalog_service(fastapi_app)
        try:
            member_id = await service.resolve_member_id(config.username)
        except LetterboxdError as exc:
            logger.warning("Could not resolve member %s: %s", config.username, exc)
            member_id = None
        return Subject(member_id=member_id, username=config.username)

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    # -- anonymous installs ---------------------------------------------------

    @fastapi_app.get("/manifest.json")
    async def manifest() -> dict[str, Any]:
        return generate_base_manifest(settings)

    async def _anonymous_catalog(catalog_id: str, extra: str | None) -> JSONResponse:
        ref = parse_catalog_id(catalog_id)
        if ref is None or ref.kind not in (CatalogKind.POPULAR, CatalogKind.TOP_RATED):
            return JSONResponse({"metas": []})
        return await _catalog_response(
            Subject.public(), "movie", catalog_id, extra, show_ratings=True
        )

    @fastapi_app.get("/catalog/movie/{catalog_id}.json")
    async def catalog(catalog_id: str) -> JSONResponse:
        return await _anonymous_catalog(catalog_id, None)

    @fastapi_app.get("/catalog/movie/{catalog_id}/{extra}.json")
    async def catalog_with_extra(catalog_id: str, extra: str) -> JSONResponse:
        return await _anonymous_catalog(catalog_id, extra)

    # -- connected users ------------------------------------------------------

    @fastapi_app.get("/stremio/{user_id}/manifest.json")
    async def user_manifest(user_id: str) -> dict[str, Any]:
        user = await _require_user(user_id)
        service = get_catalog_service(fastapi_app)
        preferences = UserStore.get_preferences(user)
        try:
            lists = await service.fetch_user_lists(user.id, user.letterboxd_id)
        except Exception:
            logger.exception("Failed to fetch lists for user %s, serving static manifest", user.id)
            return generate_manifest(
                settings, user.letterboxd_username, user.letterboxd_display_name
            )
        return generate_dynamic_manifest(
            settings,
            user.letterboxd_username,
            user.letterboxd_display_name,
            lists,
            preferences,
        )

    async def _user_catalog(
        user_id: str, content_type: str, catalog_id: str, extra: str | None
    ) -> JSONResponse:
        user = await _require_user(user_id)
        preferences = UserStore.get_preferences(user)
        subject = Subject(
            user_id=user.id,
            member_id=user.letterboxd_id,
            username=user.letterboxd_username,
            display_name=user.display_name,
        )
        return await _catalog_response(
            subject,
            content_type,
            catalog_id,
            extra,
            show_ratings=preferences.show_ratings if preferences else True,
        )

    @fastapi_app.get("/stremio/{user_id}/catalog/{content_type}/{catalog_id}.json")
    async def user_catalog(user_id: str, content_type: str, catalog_id: str) -> JSONResponse:
        return await _user_catalog(user_id, content_type, catalog_id, None)

    @fastapi_app.get(
        "/stremio/{user_id}/catalog/{content_type}/{catalog_id}/{extra}.json"
    )
    async def user_catalog_with_extra(
        user_id: str, content_type: str, catalog_id: str, extra: str
    ) -> JSONResponse:
        return await _user_catalog(user_id, content_type, catalog_id, extra)

    @fastapi_app.get("/stremio/{user_id}/stream/{content_type}/{imdb_id}.json")
    async def user_streams(user_id: str, content_type: str, imdb_id: str) -> JSONResponse:
        user = await _require_user(user_id)
        if content_type != "movie":
            return JSONResponse({"streams": []})
        service = get_catalog_service(fastapi_app)
        preferences = UserStore.get_preferences(user)
        try:
            streams = await service.get_film_streams(
                user.id,
                imdb_id,
                show_actions=preferences.show_actions if preferences else True,
            )
        except Exception:
            logger.exception("Failed to build streams for %s (user %s)", imdb_id, user.id)
            streams = []
        return JSONResponse({"streams": streams})

    # Stream links open in a browser, so actions accept GET as well as POST.
    @fastapi_app.api_route("/action/{user_id}/rate/{film_id}", methods=["GET", "POST"])
    async def rate_film(user_id: str, film_id: str, rating: str) -> dict[str, Any]:
        user = await _require_user(user_id)
        if rating == "remove":
            value: float | None = None
        else:
            try:
                value = float(rating)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail="Invalid rating") from exc
            if not 0.5 <= value <= 5 or (value * 2) % 1:
                raise HTTPException(
                    status_code=400,
                    detail="Rating must be between 0.5 and 5 in half steps",
                )

        service = get_catalog_service(fastapi_app)
        try:
            await service.update_film_relationship(user.id, film_id, {"rating": value})
        except LetterboxdError as exc:
            logger.warning("Rating %s for user %s failed: %s", film_id, user.id, exc)
            raise HTTPException(status_code=502, detail="Letterboxd update failed") from exc
        return {
            "success": True,
            "action": "rate",
            "filmId": film_id,
            "rating": value,
            "message": "Rating removed" if value is None else f"Rated {value:g}",
        }

    @fastapi_app.api_route("/action/{user_id}/{action}/{film_id}", methods=["GET", "POST"])
    async def toggle_film(
        user_id: str,
        action: str,
        film_id: str,
        set_value: str = Query(default="true", alias="set"),
    ) -> dict[str, Any]:
        if action not in TOGGLE_ACTIONS:
            raise HTTPException(status_code=400, detail=f"Unknown action {action}")
        user = await _require_user(user_id)
        field, on_message, off_message = TOGGLE_ACTIONS[action]
        value = set_value.lower() == "true"

        service = get_catalog_service(fastapi_app)
        try:
            await service.update_film_relationship(user.id, film_id, {field: value})
        except LetterboxdError as exc:
            logger.warning("Action %s on %s for user %s failed: %s", action, film_id, user.id, exc)
            raise HTTPException(status_code=502, detail="Letterboxd update failed") from exc
        return {
            "success": True,
            "action": action,
            "filmId": film_id,
            "set": value,
            "message": on_message if value else off_message,
        }

    # -- misc -----------------------------------------------------------------

    @fastapi_app.get("/api/cache/stats")
    async def cache_stats() -> dict[str, Any]:
        return {"caches": get_catalog_service(fastapi_app).cache_stats()}

    @fastapi_app.get("/poster")
    async def poster(url: str) -> RedirectResponse:
        host = urlparse(url).hostname or ""
        if not (host == POSTER_HOST_SUFFIX or host.endswith(f".{POSTER_HOST_SUFFIX}")):
            raise HTTPException(status_code=400, detail="Unsupported poster host")
        return RedirectResponse(url, status_code=302)

    # -- shared configurations ------------------------------------------------

    @fastapi_app.get("/{config}/manifest.json")
    async def public_manifest(config: str) -> dict[str, Any]:
        public_config = _decode_public_config(config)
        service = get_catalog_service(fastapi_app)
        display_name: str | None = None
        list_names: dict[str, str] = {}
        watchlist_names: dict[str, str] = {}
        try:
            usernames = list(public_config.external_watchlists or [])
            if public_config.username:
                usernames.insert(0, public_config.username)
            watchlist_names = await service.resolve_display_names(usernames)
            list_names = await service.resolve_list_names(public_config.list_ids)
        except LetterboxdError as exc:
            logger.warning("Name lookups for shared manifest failed: %s", exc)
        if public_config.username:
            display_name = watchlist_names.get(public_config.username) or public_config.username
        return generate_public_manifest(
            settings, public_config, display_name, list_names, watchlist_names
        )

    async def _public_catalog(config: str, catalog_id: str, extra: str | None) -> JSONResponse:
        public_config = _decode_public_config(config)
        subject = await _public_subject(public_config)
        return await _catalog_response(
            subject, "movie", catalog_id, extra, show_ratings=public_config.show_ratings
        )

    @fastapi_app.get("/{config}/catalog/movie/{catalog_id}.json")
    async def public_catalog(config: str, catalog_id: str) -> JSONResponse:
        return await _public_catalog(config, catalog_id, None)

    @fastapi_app.get("/{config}/catalog/movie/{catalog_id}/{extra}.json")
    async def public_catalog_with_extra(
        config: str, catalog_id: str, extra: str
    ) -> JSONResponse:
        return await _public_catalog(config, catalog_id, extra)


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
