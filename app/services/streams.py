"""Stremio stream entries that surface Letterboxd status and quick actions."""

from __future__ import annotations

from typing import Any, Mapping
from urllib.parse import quote, urlencode

from ..models import FilmRatingSnapshot
from ..utils import format_stars


def _format_count(value: int) -> str:
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{value / 1_000:.1f}K"
    return str(value)


def _letterboxd_url(film: Mapping[str, Any]) -> str:
    for link in film.get("links") or []:
        if isinstance(link, Mapping) and link.get("type") == "letterboxd" and link.get("url"):
            return str(link["url"])
    return f"https://letterboxd.com/film/{film.get('id')}/"


def _stream(name: str, description: str, url: str, binge_group: str) -> dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "externalUrl": url,
        "behaviorHints": {"notWebReady": True, "bingeGroup": binge_group},
    }


def build_film_streams(
    film: Mapping[str, Any],
    snapshot: FilmRatingSnapshot,
    *,
    imdb_id: str,
    user_id: str,
    base_url: str,
    show_actions: bool = True,
) -> list[dict[str, Any]]:
    """Return an info stream followed by rate, watched, liked and watchlist toggles.

    With ``show_actions`` off only the info stream is returned.
    """

    film_id = snapshot.film_id
    binge_group = f"letterboxd-{imdb_id}"
    action_base = f"{base_url.rstrip('/')}/action/{quote(user_id)}"

    lines: list[str] = []
    if snapshot.community_rating is not None:
        count = (
            f" ({_format_count(snapshot.community_ratings)} ratings)"
            if snapshot.community_ratings > 0
            else ""
        )
        lines.append(
            f"{format_stars(snapshot.community_rating)}  "
            f"{snapshot.community_rating:.1f}/5{count}"
        )
    statuses = [
        label
        for flag, label in (
            (snapshot.watched, "✓ Watched"),
            (snapshot.liked, "♥ Liked"),
            (snapshot.in_watchlist, "In Watchlist"),
        )
        if flag
    ]
    if statuses:
        lines.append("  ·  ".join(statuses))
    if snapshot.user_rating is not None:
        lines.append(
            f"Your rating: {format_stars(snapshot.user_rating)} {snapshot.user_rating:.1f}"
        )

    streams = [
        _stream(
            "Letterboxd",
            "\n".join(lines) or "View on Letterboxd",
            _letterboxd_url(film),
            binge_group,
        )
    ]
    if not show_actions:
        return streams

    rate_query: dict[str, Any] = {"imdb": imdb_id, "name": film.get("name") or ""}
    if snapshot.user_rating is not None:
        rate_query["current"] = snapshot.user_rating
        streams.append(
            _stream(
                f"★ {snapshot.user_rating:.1f}",
                "Change your Letterboxd rating",
                f"{action_base}/rate/{film_id}?{urlencode(rate_query)}",
                binge_group,
            )
        )
    else:
        streams.append(
            _stream(
                "★ Rate",
                "Rate this film on Letterboxd",
                f"{action_base}/rate/{film_id}?{urlencode(rate_query)}",
                binge_group,
            )
        )

    toggles = (
        ("watched", snapshot.watched, "✓ Watched", "○ Watch",
         "Click to remove from watched", "Click to mark as watched"),
        ("liked", snapshot.liked, "♥ Liked", "♡ Like",
         "Click to unlike", "Click to like on Letterboxd"),
        ("watchlist", snapshot.in_watchlist, "In Watchlist", "+ Watchlist",
         "Click to remove from watchlist", "Click to add to watchlist"),
    )
    for action, active, on_name, off_name, on_text, off_text in toggles:
        query = urlencode({"set": "false" if active else "true", "imdb": imdb_id})
        streams.append(
            _stream(
                on_name if active else off_name,
                on_text if active else off_text,
                f"{action_base}/{action}/{film_id}?{query}",
                binge_group,
            )
        )
    return streams
