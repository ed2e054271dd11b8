"""Utilities for communicating with the Letterboxd API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from ..config import Settings
from .pagination import Page

logger = logging.getLogger(__name__)


class LetterboxdError(Exception):
    """Raised when the Letterboxd API cannot satisfy a request."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class TokenGrant:
    """Access credentials returned from the token endpoint."""

    access_token: str
    refresh_token: str | None
    expires_in: int


class LetterboxdClient:
    """Thin wrapper around the Letterboxd HTTP API."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    def _headers(self, access_token: str | None = None) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": self._settings.letterboxd_user_agent,
        }
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        access_token: str | None = None,
        params: Mapping[str, Any] | None = None,
        json: Mapping[str, Any] | None = None,
        data: Mapping[str, Any] | None = None,
    ) -> Any:
        cleaned_params = (
            {key: value for key, value in params.items() if value is not None}
            if params
            else None
        )
        try:
            response = await self._client.request(
                method,
                path,
                headers=self._headers(access_token),
                params=cleaned_params,
                json=json,
                data=data,
            )
        except httpx.HTTPError as exc:
            raise LetterboxdError(
                f"{method} {path} failed: {exc.__class__.__name__}"
            ) from exc

        if response.status_code >= 400:
            logger.warning(
                "Letterboxd %s %s returned %s: %s",
                method,
                path,
                response.status_code,
                response.text[:200],
            )
            raise LetterboxdError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise LetterboxdError(f"{method} {path} returned non-JSON content") from exc

    async def _page(
        self,
        path: str,
        *,
        access_token: str | None,
        params: Mapping[str, Any],
    ) -> Page:
        data = await self._request("GET", path, access_token=access_token, params=params)
        if not isinstance(data, dict):
            raise LetterboxdError(f"Unexpected response structure for {path}")
        items = [item for item in data.get("items") or [] if isinstance(item, dict)]
        cursor = data.get("next") or data.get("cursor")
        return Page(items=items, cursor=str(cursor) if cursor else None)

    # -- auth -----------------------------------------------------------------

    async def _token(self, form: dict[str, str]) -> TokenGrant:
        client_id = self._settings.letterboxd_client_id
        client_secret = self._settings.letterboxd_client_secret
        if not (client_id and client_secret):
            raise LetterboxdError("Letterboxd client credentials are not configured")
        payload = {**form, "client_id": client_id, "client_secret": client_secret}
        data = await self._request("POST", "/auth/token", data=payload)
        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            raise LetterboxdError("Token response did not include an access token")
        try:
            expires_in = int(data.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0
        return TokenGrant(
            access_token=str(access_token),
            refresh_token=data.get("refresh_token"),
            expires_in=expires_in,
        )

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a fresh access token."""

        return await self._token(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )

    async def client_credentials_token(self) -> TokenGrant:
        """Return an app-level token for requests made without a member."""

        return await self._token({"grant_type": "client_credentials"})

    # -- collections ----------------------------------------------------------

    async def get_watchlist(
        self,
        access_token: str,
        member_id: str,
        *,
        cursor: str | None = None,
        per_page: int = 100,
        sort: str | None = None,
    ) -> Page:
        return await self._page(
            f"/member/{member_id}/watchlist",
            access_token=access_token,
            params={"perPage": per_page, "cursor": cursor, "sort": sort},
        )

    async def get_log_entries(
        self,
        access_token: str,
        member_id: str,
        *,
        cursor: str | None = None,
        per_page: int = 100,
        sort: str | None = None,
    ) -> Page:
        return await self._page(
            "/log-entries",
            access_token=access_token,
            params={
                "member": member_id,
                "memberRelationship": "Owner",
                "perPage": per_page,
                "cursor": cursor,
                "sort": sort,
            },
        )

    async def get_list_entries(
        self,
        access_token: str,
        list_id: str,
        *,
        cursor: str | None = None,
        per_page: int = 100,
        sort: str | None = None,
    ) -> Page:
        return await self._page(
            f"/list/{list_id}/entries",
            access_token=access_token,
            params={"perPage": per_page, "cursor": cursor, "sort": sort},
        )

    async def get_activity(
        self,
        access_token: str,
        member_id: str,
        *,
        cursor: str | None = None,
        per_page: int = 100,
    ) -> Page:
        """Fetch the member's network activity feed.

        The feed paginates with ``start=<id>`` tokens rather than opaque cursors.
        """

        start = cursor.removeprefix("start=") if cursor else None
        return await self._page(
            f"/member/{member_id}/activity",
            access_token=access_token,
            params={
                "perPage": per_page,
                "start": start,
                "include": ["DiaryEntryActivity", "FilmRatingActivity", "WatchlistActivity"],
                "where": "NotOwnActivity",
            },
        )

    async def get_films(
        self,
        access_token: str,
        *,
        cursor: str | None = None,
        per_page: int = 100,
        sort: str | None = None,
        member_id: str | None = None,
        relationship: str | None = None,
    ) -> Page:
        """Search films, optionally restricted to a member relationship."""

        params: dict[str, Any] = {"perPage": per_page, "cursor": cursor, "sort": sort}
        if member_id:
            params["member"] = member_id
            params["memberRelationship"] = relationship or "Watched"
        return await self._page("/films", access_token=access_token, params=params)

    async def get_member_lists(
        self,
        access_token: str,
        member_id: str,
        *,
        cursor: str | None = None,
        per_page: int = 50,
    ) -> Page:
        return await self._page(
            "/lists",
            access_token=access_token,
            params={
                "member": member_id,
                "memberRelationship": "Owner",
                "perPage": per_page,
                "cursor": cursor,
            },
        )

    # -- lookups --------------------------------------------------------------

    async def get_member(self, access_token: str, member_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/member/{member_id}", access_token=access_token)

    async def get_list(self, access_token: str, list_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/list/{list_id}", access_token=access_token)

    async def find_member_id(self, access_token: str, username: str) -> str | None:
        """Return the member id for a username, or ``None`` when unknown."""

        data = await self._request(
            "GET",
            "/search",
            access_token=access_token,
            params={"input": username, "include": "MemberSearchItem", "perPage": 10},
        )
        wanted = username.strip().casefold()
        items = data.get("items") if isinstance(data, dict) else None
        for item in items or []:
            member = item.get("member") if isinstance(item, dict) else None
            if not isinstance(member, dict):
                continue
            if str(member.get("username") or "").casefold() == wanted:
                return member.get("id")
        return None

    async def get_film(self, access_token: str, film_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/film/{film_id}", access_token=access_token)

    async def find_film_by_external_id(
        self, access_token: str, imdb_id: str
    ) -> dict[str, Any] | None:
        data = await self._request(
            "GET",
            "/films",
            access_token=access_token,
            params={"filmId": f"imdb:{imdb_id}", "perPage": 1},
        )
        items = data.get("items") or [] if isinstance(data, dict) else []
        return items[0] if items and isinstance(items[0], dict) else None

    async def get_film_relationship(
        self, access_token: str, film_id: str
    ) -> dict[str, Any]:
        return await self._request("GET", f"/film/{film_id}/me", access_token=access_token)

    async def get_film_statistics(
        self, access_token: str, film_id: str
    ) -> dict[str, Any]:
        return await self._request(
            "GET", f"/film/{film_id}/statistics", access_token=access_token
        )

    async def update_film_relationship(
        self,
        access_token: str,
        film_id: str,
        update: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Apply a watched/liked/watchlist/rating change for the member."""

        return await self._request(
            "PATCH", f"/film/{film_id}/me", access_token=access_token, json=dict(update)
        )
