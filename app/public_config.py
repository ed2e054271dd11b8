"""Shareable, login-free addon configuration encoded into the install URL."""

from __future__ import annotations

import base64
import binascii
import json
import logging

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class PublicCatalogToggles(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    watchlist: bool = False
    popular: bool
    top250: bool
    liked_films: bool = Field(default=False, alias="likedFilms")


class PublicConfig(BaseModel):
    """Compact config blob; field names are single letters to keep URLs short."""

    model_config = ConfigDict(populate_by_name=True)

    username: str | None = Field(default=None, alias="u")
    catalogs: PublicCatalogToggles = Field(alias="c")
    list_ids: list[str] = Field(alias="l")
    show_ratings: bool = Field(alias="r")
    custom_names: dict[str, str] | None = Field(default=None, alias="n")
    external_watchlists: list[str] | None = Field(default=None, alias="w")
    catalog_order: list[str] | None = Field(default=None, alias="o")


def encode_config(config: PublicConfig) -> str:
    payload = config.model_dump(by_alias=True, exclude_none=True)
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_config(encoded: str) -> PublicConfig | None:
    """Decode a config blob, returning ``None`` for anything malformed."""

    padded = encoded + "=" * (-len(encoded) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        payload = json.loads(raw.decode("utf-8"))
        config = PublicConfig.model_validate(payload)
    except (binascii.Error, UnicodeError, ValueError, ValidationError) as exc:
        logger.debug("Rejected public config blob: %s", exc)
        return None

    # A watchlist needs a username to belong to.
    if config.catalogs.watchlist and not config.username:
        config.catalogs.watchlist = False
    return config
