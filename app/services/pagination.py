"""Helpers for walking cursor-paginated upstream collections."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(slots=True)
class Page:
    """One page of upstream items and the cursor for the next page."""

    items: list[dict[str, Any]] = field(default_factory=list)
    cursor: str | None = None


async def fetch_all_pages(
    fetch_page: Callable[[str | None], Awaitable[Page]],
    *,
    max_pages: int,
    label: str = "collection",
) -> list[dict[str, Any]]:
    """Follow cursors until the upstream runs out or ``max_pages`` is hit.

    Pages are requested strictly one after another. Hitting the page cap is
    not an error: whatever was collected so far is returned. Upstream errors
    propagate to the caller.
    """

    collected: list[dict[str, Any]] = []
    cursor: str | None = None
    page_number = 0

    while page_number < max_pages:
        page_number += 1
        page = await fetch_page(cursor)
        collected.extend(page.items)
        logger.info(
            "%s page %s fetched: %s items (more=%s)",
            label,
            page_number,
            len(page.items),
            bool(page.cursor),
        )
        cursor = page.cursor
        if not cursor:
            break
    else:
        if cursor:
            logger.info(
                "%s stopped at page cap %s with %s items", label, max_pages, len(collected)
            )

    return collected


async def gather_in_batches(
    items: Iterable[T],
    fn: Callable[[T], Awaitable[R]],
    *,
    batch_size: int = 5,
) -> list[R]:
    """Run ``fn`` over ``items`` with at most ``batch_size`` calls in flight."""

    pending: Sequence[T] = list(items)
    results: list[R] = []
    for start in range(0, len(pending), max(batch_size, 1)):
        chunk = pending[start:start + max(batch_size, 1)]
        results.extend(await asyncio.gather(*(fn(item) for item in chunk)))
    return results
