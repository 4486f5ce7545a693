"""
DB models (DTOs) and small normalization helpers used by `library_db.py`.

This module is intentionally lightweight:
- No DB connection knowledge
- No SQL
- Pure dataclasses + helper functions
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final, Mapping

# Sort keys accepted by `LibraryFilter.sorter` (see `ordering.items_order_clause`).
SORTERS: Final[tuple[str, ...]] = (
    "date_added",
    "title",
    "year",
    "rating",
    "last_played",
    "play_count",
)

MEDIA_TYPES: Final[tuple[str, ...]] = ("movie", "tvshow", "other")

DEFAULT_SORTER: Final[str] = "date_added"
DEFAULT_LIMIT: Final[int] = 50
MAX_LIMIT: Final[int] = 1000

# Display names used by the UI's filter widgets.
_TYPE_ALIASES: Final[dict[str, str | None]] = {
    "all": None,
    "movie": "movie",
    "movies": "movie",
    "tvshow": "tvshow",
    "tvshows": "tvshow",
    "tv show": "tvshow",
    "tv shows": "tvshow",
    "show": "tvshow",
    "shows": "tvshow",
    "other": "other",
}

_SORTER_ALIASES: Final[dict[str, str]] = {
    "date added": "date_added",
    "added": "date_added",
    "last played": "last_played",
    "play count": "play_count",
}


@dataclass(frozen=True, slots=True)
class MediaItemRow:
    """
    Catalog record as stored in SQLite.

    Notes:
    - `file_path` is the stable unique identifier for a local file.
    - `play_count`, `last_played` and `date_added` belong to playback/bookkeeping
      and are never touched by a re-scan.
    - Timestamps are POSIX seconds.
    """

    id: int
    file_path: str
    media_type: str
    title: str
    file_size: int | None = None
    year: int | None = None
    season: int | None = None
    episode: int | None = None
    external_id: str | None = None
    tmdb_id: int | None = None
    poster_url: str | None = None
    backdrop_url: str | None = None
    genres: tuple[str, ...] = ()
    rating: float | None = None
    synopsis: str | None = None
    runtime: int | None = None
    last_modified: float | None = None
    last_played: float | None = None
    play_count: int = 0
    date_added: float | None = None
    original_filename: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file_path": self.file_path,
            "media_type": self.media_type,
            "title": self.title,
            "file_size": self.file_size,
            "year": self.year,
            "season": self.season,
            "episode": self.episode,
            "external_id": self.external_id,
            "tmdb_id": self.tmdb_id,
            "poster_url": self.poster_url,
            "backdrop_url": self.backdrop_url,
            "genres": list(self.genres),
            "rating": self.rating,
            "synopsis": self.synopsis,
            "runtime": self.runtime,
            "last_modified": self.last_modified,
            "last_played": self.last_played,
            "play_count": self.play_count,
            "date_added": self.date_added,
            "original_filename": self.original_filename,
        }


@dataclass(frozen=True, slots=True)
class UpsertMediaItem:
    """
    Input record written by the scanner (and by metadata refresh).

    `file_path` is required and must identify the same file across scans.
    Bookkeeping fields (play count, last played, date added) are deliberately absent.
    """

    file_path: str
    media_type: str
    title: str
    file_size: int | None = None
    year: int | None = None
    season: int | None = None
    episode: int | None = None
    external_id: str | None = None
    tmdb_id: int | None = None
    poster_url: str | None = None
    backdrop_url: str | None = None
    genres: tuple[str, ...] = ()
    rating: float | None = None
    synopsis: str | None = None
    runtime: int | None = None
    last_modified: float | None = None
    original_filename: str | None = None


@dataclass(frozen=True, slots=True)
class ScanHistoryRow:
    """One scan run as recorded in `scan_history`."""

    id: int
    folders: tuple[str, ...]
    status: str
    items_found: int
    items_matched: int
    errors: int
    removed: int
    start_time: float
    end_time: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "folders": list(self.folders),
            "status": self.status,
            "items_found": self.items_found,
            "items_matched": self.items_matched,
            "errors": self.errors,
            "removed": self.removed,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }


@dataclass(frozen=True, slots=True)
class LibraryFilter:
    """
    Read-side query parameters.

    `type` / `genre` of None mean "all". `search` is a case-insensitive
    substring match on the title. `limit=None` returns every matching row.
    """

    type: str | None = None
    genre: str | None = None
    search: str | None = None
    sorter: str = DEFAULT_SORTER
    limit: int | None = DEFAULT_LIMIT
    offset: int = 0

    def __post_init__(self) -> None:
        if self.type is not None and self.type not in MEDIA_TYPES:
            raise ValueError(f"unknown media type: {self.type!r}")
        if self.sorter not in SORTERS:
            raise ValueError(f"unknown sorter: {self.sorter!r}")
        if self.limit is not None and (self.limit < 1 or self.limit > MAX_LIMIT):
            raise ValueError(f"limit must be between 1 and {MAX_LIMIT}")
        if self.offset < 0:
            raise ValueError("offset must be >= 0")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> LibraryFilter:
        """
        Build a filter from loosely-typed UI input.

        Accepts the display names the UI uses ("Movies", "TV Shows", "All",
        "date added", "play count", ...). Raises `ValueError` for an unknown
        type or an out-of-range limit/offset.
        """
        data = data or {}

        type_raw = normalize_text(_str_or_none(data.get("type")))
        media_type: str | None = None
        if type_raw is not None:
            key = type_raw.casefold()
            if key not in _TYPE_ALIASES:
                raise ValueError(f"unknown media type: {type_raw!r}")
            media_type = _TYPE_ALIASES[key]

        genre = normalize_text(_str_or_none(data.get("genre")))
        if genre is not None and genre.casefold() == "all":
            genre = None

        # Unknown sorters (e.g. "trending" from a remote source) fall back to the default.
        sorter_raw = normalize_text(_str_or_none(data.get("sorter") or data.get("sort")))
        sorter = DEFAULT_SORTER
        if sorter_raw is not None:
            key = sorter_raw.casefold()
            key = _SORTER_ALIASES.get(key, key)
            if key in SORTERS:
                sorter = key

        return cls(
            type=media_type,
            genre=genre,
            search=normalize_text(_str_or_none(data.get("search"))),
            sorter=sorter,
            limit=_int_or_default(data.get("limit"), DEFAULT_LIMIT),
            offset=_int_or_default(data.get("offset"), 0),
        )


def _str_or_none(value: Any) -> str | None:
    return None if value is None else str(value)


def _int_or_default(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    return int(value)


def normalize_text(value: str | None) -> str | None:
    """
    Normalize optional text fields:
    - strip whitespace
    - coerce empty strings to None
    """
    if value is None:
        return None
    v = value.strip()
    return v if v else None


def normalize_int(value: int | None) -> int | None:
    """Normalize optional integer fields (coerce to int, keep None)."""
    if value is None:
        return None
    return int(value)


def normalize_genres(genres: tuple[str, ...] | list[str] | None) -> tuple[str, ...]:
    """Strip, drop empties and de-duplicate case-insensitively (first spelling wins)."""
    seen: set[str] = set()
    result: list[str] = []
    for raw in genres or ():
        g = normalize_text(raw)
        if g is None or g.casefold() in seen:
            continue
        seen.add(g.casefold())
        result.append(g)
    return tuple(result)
