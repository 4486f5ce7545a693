"""
LibraryCollection: read-only projection of the catalog for the UI.

Filtering, sorting and pagination happen in SQL (see `LibraryDb.get_all`);
this module only turns stored rows into the display shape that the UI uses
for local and remote content alike.
"""

from __future__ import annotations

import logging
import math
from enum import Enum
from pathlib import PurePath
from typing import Any, Mapping

from marquee.core.db.models import LibraryFilter, MediaItemRow
from marquee.core.library_db import LibraryDb

logger = logging.getLogger(__name__)

# Unknown ratings are shown as an average score rather than zero.
DEFAULT_RATING = 5.0


class CollectionState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


def _rating_percentage(rating: float | None) -> int:
    value = rating if rating is not None else DEFAULT_RATING
    # Round half up (not Python's banker's rounding): 7.25 -> 73.
    return int(math.floor(value * 10 + 0.5))


def _file_url(path: str) -> str:
    p = PurePath(path)
    return p.as_uri() if p.is_absolute() else f"file://{path}"


def _format_size(size: int | None) -> str:
    if not size:
        return "Unknown"
    return f"{size / 1024 / 1024:.2f} MB"


def to_display_item(item: MediaItemRow) -> dict[str, Any]:
    """Wrap a catalog row into the display shape shared with remote sources."""
    return {
        "id": item.id,
        "imdb_id": item.external_id or f"local_{item.id}",
        "title": item.title,
        "year": item.year,
        "rating": {
            "percentage": _rating_percentage(item.rating),
            "watching": 0,
            "votes": 0,
        },
        "runtime": item.runtime or 0,
        "synopsis": item.synopsis or "",
        "genres": list(item.genres),
        "images": {
            "poster": item.poster_url,
            "fanart": item.backdrop_url,
            "banner": item.backdrop_url,
        },
        "type": item.media_type,
        "season": item.season,
        "episode": item.episode,
        "torrents": {
            # Local file as a pseudo-torrent so players treat it like any other source.
            "local": {
                "url": _file_url(item.file_path),
                "size": _format_size(item.file_size),
                "seed": 0,
                "peer": 0,
            }
        },
        "file_path": item.file_path,
        "last_played": item.last_played,
        "play_count": item.play_count,
    }


class LibraryCollection:
    """
    Usage:
        collection = LibraryCollection(db)
        items = await collection.fetch({"type": "Movies", "sorter": "year", "limit": 2})

    Never writes to the catalog.
    """

    def __init__(self, db: LibraryDb) -> None:
        self._db = db
        self.state = CollectionState.IDLE

    @staticmethod
    def _as_filter(filters: LibraryFilter | Mapping[str, Any] | None) -> LibraryFilter:
        if isinstance(filters, LibraryFilter):
            return filters
        return LibraryFilter.from_mapping(filters)

    async def fetch(
        self, filters: LibraryFilter | Mapping[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """
        Return display items matching `filters`.

        Raises `ValueError` for invalid filters. A storage failure sets
        `state` to `error` and is re-raised.
        """
        query = self._as_filter(filters)
        self.state = CollectionState.LOADING
        try:
            rows = await self._db.get_all(query)
        except Exception:
            self.state = CollectionState.ERROR
            logger.exception("LibraryCollection.fetch failed")
            raise
        self.state = CollectionState.LOADED
        return [to_display_item(row) for row in rows]

    async def count(self, filters: LibraryFilter | Mapping[str, Any] | None = None) -> int:
        """Number of items matching `filters`, ignoring limit/offset."""
        return await self._db.count(self._as_filter(filters))
