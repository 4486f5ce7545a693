"""
Media catalog database access layer.

Goals:
- SQLite + aiosqlite, async/await friendly.
- Keep schema small, but leave room to evolve (via user_version migrations).
- Safe to use from a scan (many upserts) and from the web layer (reads) at the
  same time: every public operation runs under one `asyncio.Lock`.

This module is intentionally independent of the web layer.

Note:
- Models/DTOs and normalization helpers live in `marquee.core.db.models`
- Schema/migrations live in `marquee.core.db.schema`
- Query functions live in `marquee.core.db.queries_*` modules
- `LibraryDb` remains the public facade used by the rest of the codebase
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Iterable, Sequence

import aiosqlite

from marquee.core import StoreWriteError
from marquee.core.db import queries_items, queries_scans
from marquee.core.db.models import (
    LibraryFilter,
    MediaItemRow,
    ScanHistoryRow,
    UpsertMediaItem,
    normalize_genres,
    normalize_int,
    normalize_text,
)
from marquee.core.db.schema import ensure_schema as ensure_schema_sql
from marquee.core.filename_parser import UNKNOWN_TITLE

logger = logging.getLogger(__name__)


def _casefold(value: Any) -> Any:
    return value.casefold() if isinstance(value, str) else value


class LibraryDb:
    """
    Async access layer for the media catalog.

    Usage:
        db = LibraryDb("marquee.db")
        await db.open()
        await db.ensure_schema()
        ... queries ...
        await db.close()

    Notes:
    - This class is designed to be injected into other components.
    - Connections are not pooled; we keep a single connection.
    - Writes commit immediately. Any SQLite failure during a write is raised
      as `StoreWriteError`.
    """

    def __init__(self, db_path: str | Path, *, clock: Callable[[], float] = time.time) -> None:
        self._db_path = str(db_path)
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._clock = clock

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def path(self) -> str:
        return self._db_path

    async def open(self) -> None:
        if self._conn is not None:
            return
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row

        await self._conn.execute("PRAGMA journal_mode = WAL;")
        await self._conn.execute("PRAGMA synchronous = NORMAL;")
        await self._conn.execute("PRAGMA temp_store = MEMORY;")
        await self._conn.create_function("casefold", 1, _casefold, deterministic=True)

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("LibraryDb is not open. Call await db.open() first.")
        return self._conn

    async def ensure_schema(self) -> None:
        """Create or migrate schema to current version."""
        async with self._lock:
            await ensure_schema_sql(self._require_conn())

    @asynccontextmanager
    async def _reading(self) -> AsyncIterator[aiosqlite.Connection]:
        async with self._lock:
            yield self._require_conn()

    @asynccontextmanager
    async def _writing(self, what: str) -> AsyncIterator[aiosqlite.Connection]:
        """Serialize, commit on success, roll back and raise `StoreWriteError` on failure."""
        async with self._lock:
            conn = self._require_conn()
            try:
                yield conn
                await conn.commit()
            except aiosqlite.Error as e:
                await self._rollback(conn)
                raise StoreWriteError(f"{what} failed: {e}") from e
            except BaseException:
                # Cancellation included: never leave a half-written transaction open.
                await self._rollback(conn)
                raise

    @staticmethod
    async def _rollback(conn: aiosqlite.Connection) -> None:
        try:
            await conn.rollback()
        except aiosqlite.Error as e:
            logger.warning("Rollback failed: %s", e)

    @staticmethod
    def _normalize(item: UpsertMediaItem) -> UpsertMediaItem:
        return UpsertMediaItem(
            file_path=str(item.file_path),
            media_type=str(item.media_type),
            title=normalize_text(item.title) or UNKNOWN_TITLE,
            file_size=normalize_int(item.file_size),
            year=normalize_int(item.year),
            season=normalize_int(item.season),
            episode=normalize_int(item.episode),
            external_id=normalize_text(item.external_id),
            tmdb_id=normalize_int(item.tmdb_id),
            poster_url=normalize_text(item.poster_url),
            backdrop_url=normalize_text(item.backdrop_url),
            genres=normalize_genres(item.genres),
            rating=float(item.rating) if item.rating is not None else None,
            synopsis=normalize_text(item.synopsis),
            runtime=normalize_int(item.runtime),
            last_modified=item.last_modified,
            original_filename=normalize_text(item.original_filename),
        )

    # ===========================================================================
    # Items: upsert
    # ===========================================================================

    async def upsert_item(self, item: UpsertMediaItem) -> int:
        """
        Insert or update an item by its path. Returns the item id.

        Play count, last played and date added of an existing record are preserved.
        """
        async with self._writing(f"upsert of {item.file_path!r}") as conn:
            return await queries_items.upsert_item(conn, self._normalize(item), now=self._clock())

    async def upsert_items(self, items: Iterable[UpsertMediaItem]) -> int:
        """Bulk upsert in one transaction. Returns count of upserted items."""
        async with self._writing("bulk upsert") as conn:
            now = self._clock()
            count = 0
            for item in items:
                await queries_items.upsert_item(conn, self._normalize(item), now=now)
                count += 1
            return count

    # ===========================================================================
    # Items: reads
    # ===========================================================================

    async def get_item_by_id(self, item_id: int) -> MediaItemRow | None:
        async with self._reading() as conn:
            return await queries_items.get_item_by_id(conn, item_id)

    async def get_item_by_path(self, path: str) -> MediaItemRow | None:
        async with self._reading() as conn:
            return await queries_items.get_item_by_path(conn, path)

    async def get_all(self, filters: LibraryFilter | None = None) -> list[MediaItemRow]:
        """
        Filtered, sorted and paginated items (see `LibraryFilter`).

        Without `filters` every item is returned, newest first.
        """
        async with self._reading() as conn:
            return await queries_items.list_items(conn, filters or LibraryFilter(limit=None))

    async def count(self, filters: LibraryFilter | None = None) -> int:
        """Count items matching `filters` (pagination is ignored)."""
        async with self._reading() as conn:
            return await queries_items.count_items(conn, filters)

    async def list_paths_under(self, root: str) -> list[str]:
        async with self._reading() as conn:
            return await queries_items.list_paths_under(conn, root)

    async def list_genres(self, media_type: str | None = None) -> list[str]:
        async with self._reading() as conn:
            return await queries_items.list_genres(conn, media_type)

    async def stats(self) -> dict[str, Any]:
        async with self._reading() as conn:
            return await queries_items.item_stats(conn)

    # ===========================================================================
    # Items: deletes / playback
    # ===========================================================================

    async def delete_items_by_paths(self, paths: Iterable[str]) -> int:
        paths = list(paths)
        if not paths:
            return 0
        async with self._writing("delete by path") as conn:
            return await queries_items.delete_items_by_paths(conn, paths)

    async def delete_item(self, item_id: int) -> bool:
        async with self._writing(f"delete of item {item_id}") as conn:
            return await queries_items.delete_item(conn, item_id)

    async def clear(self) -> int:
        """Delete every item. Scan history is kept."""
        async with self._writing("clear") as conn:
            return await queries_items.clear_items(conn)

    async def record_playback(self, item_id: int) -> bool:
        """Increment play count and stamp last played. False if the item does not exist."""
        async with self._writing(f"playback update of item {item_id}") as conn:
            return await queries_items.record_playback(conn, item_id, now=self._clock())

    # ===========================================================================
    # Scan history
    # ===========================================================================

    async def start_scan_record(self, folders: Sequence[str]) -> int:
        async with self._writing("scan history insert") as conn:
            return await queries_scans.start_scan_record(conn, folders, now=self._clock())

    async def finish_scan_record(
        self,
        scan_id: int,
        *,
        status: str,
        found: int,
        matched: int,
        errors: int,
        removed: int = 0,
    ) -> bool:
        async with self._writing("scan history update") as conn:
            return await queries_scans.finish_scan_record(
                conn,
                scan_id,
                status=status,
                found=found,
                matched=matched,
                errors=errors,
                removed=removed,
                now=self._clock(),
            )

    async def discard_scan_record(self, scan_id: int) -> bool:
        """Drop the history row of a run that never got going."""
        async with self._writing("scan history delete") as conn:
            return await queries_scans.delete_scan_record(conn, scan_id)

    async def list_scan_history(self, limit: int = 10) -> list[ScanHistoryRow]:
        async with self._reading() as conn:
            return await queries_scans.list_scan_history(conn, limit=limit)
