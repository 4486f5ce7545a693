"""
Media item queries used by `marquee.core.library_db.LibraryDb`.

Design:
- Functions are *pure DB helpers*: they take an open `aiosqlite.Connection`
  and return rows/materialized dataclasses.
- Ordering is centralized via `marquee.core.db.ordering.items_order_clause`.
- These functions assume `conn.row_factory = aiosqlite.Row` and that the
  `casefold()` SQL function has been registered on the connection.

Important:
- Do NOT interpolate user input into SQL. The only dynamic SQL here is the
  WHERE skeleton (fixed fragments) and the whitelisted ORDER BY clause.
"""

from __future__ import annotations

import json
import os
from typing import Any, Iterable

import aiosqlite

from marquee.core.db.models import LibraryFilter, MediaItemRow, UpsertMediaItem
from marquee.core.db.ordering import items_order_clause


def _decode_genres(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    try:
        value = json.loads(raw)
    except ValueError:
        return ()
    if not isinstance(value, list):
        return ()
    return tuple(str(g) for g in value if g)


def _row_to_item(row: aiosqlite.Row) -> MediaItemRow:
    """Convert an aiosqlite Row to a MediaItemRow dataclass."""
    return MediaItemRow(
        id=int(row["id"]),
        file_path=str(row["file_path"]),
        media_type=str(row["media_type"]),
        title=str(row["title"]),
        file_size=row["file_size"],
        year=row["year"],
        season=row["season"],
        episode=row["episode"],
        external_id=row["external_id"],
        tmdb_id=row["tmdb_id"],
        poster_url=row["poster_url"],
        backdrop_url=row["backdrop_url"],
        genres=_decode_genres(row["genres"]),
        rating=row["rating"],
        synopsis=row["synopsis"],
        runtime=row["runtime"],
        last_modified=row["last_modified"],
        last_played=row["last_played"],
        play_count=int(row["play_count"] or 0),
        date_added=row["date_added"],
        original_filename=row["original_filename"],
    )


def _where(filters: LibraryFilter) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if filters.type is not None:
        clauses.append("m.media_type = ?")
        params.append(filters.type)
    if filters.genre is not None:
        clauses.append(
            "EXISTS (SELECT 1 FROM json_each(m.genres) g WHERE casefold(g.value) = ?)"
        )
        params.append(filters.genre.casefold())
    if filters.search is not None:
        # instr() instead of LIKE: no wildcard escaping, and casefold() handles non-ASCII.
        clauses.append("instr(casefold(m.title), ?) > 0")
        params.append(filters.search.casefold())
    sql = ("WHERE " + " AND ".join(clauses)) if clauses else ""
    return sql, params


# ---------------------------------------------------------------------------
# Upsert
# ---------------------------------------------------------------------------


async def upsert_item(conn: aiosqlite.Connection, item: UpsertMediaItem, *, now: float) -> int:
    """
    Insert or update an item by its path. Returns the item id.

    `play_count`, `last_played` and `date_added` are left out of the UPDATE
    branch, so they survive re-scans of the same path.
    """
    await conn.execute(
        """
        INSERT INTO media_items(
            file_path, file_size, media_type,
            title, year, season, episode,
            external_id, tmdb_id, poster_url, backdrop_url,
            genres, rating, synopsis, runtime,
            last_modified, date_added, original_filename
        ) VALUES (
            :file_path, :file_size, :media_type,
            :title, :year, :season, :episode,
            :external_id, :tmdb_id, :poster_url, :backdrop_url,
            :genres, :rating, :synopsis, :runtime,
            :last_modified, :date_added, :original_filename
        )
        ON CONFLICT(file_path) DO UPDATE SET
            file_size         = excluded.file_size,
            media_type        = excluded.media_type,
            title             = excluded.title,
            year              = excluded.year,
            season            = excluded.season,
            episode           = excluded.episode,
            external_id       = excluded.external_id,
            tmdb_id           = excluded.tmdb_id,
            poster_url        = excluded.poster_url,
            backdrop_url      = excluded.backdrop_url,
            genres            = excluded.genres,
            rating            = excluded.rating,
            synopsis          = excluded.synopsis,
            runtime           = excluded.runtime,
            last_modified     = excluded.last_modified,
            original_filename = excluded.original_filename
        """,
        {
            "file_path": item.file_path,
            "file_size": item.file_size,
            "media_type": item.media_type,
            "title": item.title,
            "year": item.year,
            "season": item.season,
            "episode": item.episode,
            "external_id": item.external_id,
            "tmdb_id": item.tmdb_id,
            "poster_url": item.poster_url,
            "backdrop_url": item.backdrop_url,
            "genres": json.dumps(list(item.genres)),
            "rating": item.rating,
            "synopsis": item.synopsis,
            "runtime": item.runtime,
            "last_modified": item.last_modified,
            "date_added": now,
            "original_filename": item.original_filename,
        },
    )

    cursor = await conn.execute(
        "SELECT id FROM media_items WHERE file_path = ?;", (item.file_path,)
    )
    row = await cursor.fetchone()
    if row is None:
        raise RuntimeError("Upsert failed: item row not found after insert/update.")
    return int(row["id"])


# ---------------------------------------------------------------------------
# Basic get/list/count
# ---------------------------------------------------------------------------


async def get_item_by_id(conn: aiosqlite.Connection, item_id: int) -> MediaItemRow | None:
    cursor = await conn.execute("SELECT * FROM media_items WHERE id = ?;", (int(item_id),))
    row = await cursor.fetchone()
    return _row_to_item(row) if row else None


async def get_item_by_path(conn: aiosqlite.Connection, path: str) -> MediaItemRow | None:
    cursor = await conn.execute("SELECT * FROM media_items WHERE file_path = ?;", (path,))
    row = await cursor.fetchone()
    return _row_to_item(row) if row else None


async def list_items(conn: aiosqlite.Connection, filters: LibraryFilter) -> list[MediaItemRow]:
    where, params = _where(filters)
    order_clause = items_order_clause(filters.sorter)
    cursor = await conn.execute(
        f"""
        SELECT * FROM media_items m
        {where}
        {order_clause}
        LIMIT ? OFFSET ?;
        """,
        (*params, -1 if filters.limit is None else int(filters.limit), int(filters.offset)),
    )
    rows = await cursor.fetchall()
    return [_row_to_item(r) for r in rows]


async def count_items(conn: aiosqlite.Connection, filters: LibraryFilter | None = None) -> int:
    where, params = _where(filters) if filters is not None else ("", [])
    cursor = await conn.execute(f"SELECT COUNT(*) AS c FROM media_items m {where};", params)
    row = await cursor.fetchone()
    return int(row["c"]) if row else 0


async def list_paths_under(conn: aiosqlite.Connection, root: str) -> list[str]:
    """All stored paths inside `root` (recursively)."""
    prefix = root.rstrip("/\\") + os.sep
    cursor = await conn.execute(
        "SELECT file_path FROM media_items WHERE substr(file_path, 1, ?) = ?;",
        (len(prefix), prefix),
    )
    rows = await cursor.fetchall()
    return [str(r["file_path"]) for r in rows]


# ---------------------------------------------------------------------------
# Deletes / playback bookkeeping
# ---------------------------------------------------------------------------


async def delete_items_by_paths(conn: aiosqlite.Connection, paths: Iterable[str]) -> int:
    """Delete items by path. Returns count of deleted items."""
    deleted = 0
    for path in paths:
        cursor = await conn.execute("DELETE FROM media_items WHERE file_path = ?;", (path,))
        deleted += cursor.rowcount
    return deleted


async def delete_item(conn: aiosqlite.Connection, item_id: int) -> bool:
    """Delete an item by id. Returns True if deleted, False if not found."""
    cursor = await conn.execute("DELETE FROM media_items WHERE id = ?;", (int(item_id),))
    return cursor.rowcount > 0


async def clear_items(conn: aiosqlite.Connection) -> int:
    cursor = await conn.execute("DELETE FROM media_items;")
    return cursor.rowcount


async def record_playback(conn: aiosqlite.Connection, item_id: int, *, now: float) -> bool:
    cursor = await conn.execute(
        """
        UPDATE media_items
        SET play_count = play_count + 1, last_played = ?
        WHERE id = ?;
        """,
        (now, int(item_id)),
    )
    return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# Genres / stats
# ---------------------------------------------------------------------------


async def list_genres(conn: aiosqlite.Connection, media_type: str | None = None) -> list[str]:
    """Distinct genre names (case-insensitively de-duplicated), sorted by name."""
    where = "WHERE m.media_type = ?" if media_type is not None else ""
    params: tuple[Any, ...] = (media_type,) if media_type is not None else ()
    cursor = await conn.execute(
        f"""
        SELECT MIN(g.value) AS name
        FROM media_items m, json_each(m.genres) g
        {where}
        GROUP BY casefold(g.value)
        ORDER BY name COLLATE NOCASE;
        """,
        params,
    )
    rows = await cursor.fetchall()
    return [str(r["name"]) for r in rows if r["name"]]


async def item_stats(conn: aiosqlite.Connection) -> dict[str, Any]:
    cursor = await conn.execute(
        """
        SELECT
            COUNT(*) AS total,
            COALESCE(SUM(media_type = 'movie'), 0) AS movies,
            COALESCE(SUM(media_type = 'tvshow'), 0) AS tvshows,
            COALESCE(SUM(media_type = 'other'), 0) AS other,
            COALESCE(SUM(external_id IS NOT NULL OR tmdb_id IS NOT NULL), 0) AS matched,
            COALESCE(SUM(file_size), 0) AS total_size,
            COALESCE(SUM(play_count), 0) AS total_plays
        FROM media_items;
        """
    )
    row = await cursor.fetchone()
    if row is None:
        return {
            "total": 0,
            "movies": 0,
            "tvshows": 0,
            "other": 0,
            "matched": 0,
            "total_size": 0,
            "total_plays": 0,
        }
    return {key: int(row[key]) for key in row.keys()}
