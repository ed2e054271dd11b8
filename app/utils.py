"""Utility helpers for the Stremboxd service."""

from __future__ import annotations

from urllib.parse import unquote

MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def format_stars(rating: float) -> str:
    """Render a rating as star glyphs only, e.g. 4.5 -> ``★★★★½``."""

    full = int(rating)
    half = "½" if rating % 1 >= 0.5 else ""
    return "★" * full + half


def format_diary_date(iso_date: str) -> str:
    """Turn ``2024-01-15`` into ``15 Jan 2024``; unparseable input is returned as-is."""

    parts = iso_date.split("-")
    if len(parts) != 3 or not all(parts):
        return iso_date
    year, month, day = parts
    try:
        month_number = int(month)
        day_number = int(day[:2])
    except ValueError:
        return iso_date
    if not 1 <= month_number <= 12:
        return iso_date
    month_name = MONTHS[month_number - 1]
    return f"{day_number} {month_name} {year}"


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "…"


def parse_extra(extra: str | None) -> dict[str, str]:
    """Parse Stremio extra path segments like ``skip=20&genre=Shuffle``."""

    if not extra:
        return {}
    params: dict[str, str] = {}
    for part in extra.split("&"):
        key, sep, value = part.partition("=")
        if key and sep:
            params[key] = unquote(value)
    return params


def coerce_skip(value: object) -> int:
    try:
        skip = int(str(value))
    except (TypeError, ValueError):
        return 0
    return max(skip, 0)
