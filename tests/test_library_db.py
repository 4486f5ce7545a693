"""
Tests for marquee.core.library_db and marquee.core.db.

These tests verify:
- Schema creation and the open/close lifecycle
- Upsert semantics (bookkeeping survives re-scans)
- Filtering, sorting and pagination
- Genres, stats, deletes, playback and scan history
"""

from __future__ import annotations

import asyncio
import itertools

import pytest

from marquee.core import StoreWriteError
from marquee.core.db.models import LibraryFilter, UpsertMediaItem
from marquee.core.db.schema import SCHEMA_VERSION
from marquee.core.library_db import LibraryDb


def make_clock(start: float = 1000.0):
    """Clock that advances by one second per call."""
    counter = itertools.count()
    return lambda: start + next(counter)


def movie(path: str, title: str, **kwargs) -> UpsertMediaItem:
    return UpsertMediaItem(file_path=path, media_type="movie", title=title, **kwargs)


@pytest.fixture
async def db() -> LibraryDb:
    """Create an in-memory database for testing."""
    db = LibraryDb(":memory:", clock=make_clock())
    await db.open()
    await db.ensure_schema()
    yield db
    await db.close()


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    """Tests for opening and migrating the database."""

    async def test_open_close(self) -> None:
        db = LibraryDb(":memory:")
        assert not db.is_open

        await db.open()
        assert db.is_open

        await db.close()
        assert not db.is_open

    async def test_schema_version(self, db: LibraryDb) -> None:
        conn = db._require_conn()
        cursor = await conn.execute("PRAGMA user_version;")
        row = await cursor.fetchone()
        assert row[0] == SCHEMA_VERSION

        cursor = await conn.execute("SELECT name FROM sqlite_master WHERE type = 'table';")
        tables = {r[0] for r in await cursor.fetchall()}
        assert {"media_items", "scan_history"} <= tables
        assert "meta" not in tables

    async def test_ensure_schema_is_idempotent(self, db: LibraryDb) -> None:
        await db.ensure_schema()
        assert await db.count() == 0

    async def test_requires_open(self) -> None:
        db = LibraryDb(":memory:")
        with pytest.raises(RuntimeError):
            await db.count()

    async def test_on_disk(self, tmp_path) -> None:
        path = tmp_path / "library.db"
        db = LibraryDb(path)
        await db.open()
        await db.ensure_schema()
        await db.upsert_item(movie("/m/a.mkv", "A"))
        await db.close()

        reopened = LibraryDb(path)
        await reopened.open()
        await reopened.ensure_schema()
        assert await reopened.count() == 1
        await reopened.close()


# =============================================================================
# Upsert
# =============================================================================


class TestUpsert:
    """Tests for insert/update by path."""

    async def test_insert(self, db: LibraryDb) -> None:
        item_id = await db.upsert_item(
            movie(
                "/m/heat.mkv",
                "Heat",
                year=1995,
                genres=("Crime", "crime", " Drama "),
                rating=8.3,
                file_size=1024,
            )
        )

        row = await db.get_item_by_id(item_id)
        assert row is not None
        assert row.title == "Heat"
        assert row.year == 1995
        assert row.genres == ("Crime", "Drama")
        assert row.rating == 8.3
        assert row.play_count == 0
        assert row.last_played is None
        assert row.date_added is not None

    async def test_update_preserves_bookkeeping(self, db: LibraryDb) -> None:
        item_id = await db.upsert_item(movie("/m/heat.mkv", "Heat"))
        assert await db.record_playback(item_id)
        before = await db.get_item_by_id(item_id)

        same_id = await db.upsert_item(movie("/m/heat.mkv", "Heat", year=1995, rating=8.3))
        after = await db.get_item_by_id(item_id)

        assert same_id == item_id
        assert after.year == 1995
        assert after.play_count == 1
        assert after.last_played == before.last_played
        assert after.date_added == before.date_added
        assert await db.count() == 1

    async def test_blank_title_becomes_unknown(self, db: LibraryDb) -> None:
        item_id = await db.upsert_item(movie("/m/x.mkv", "   "))

        row = await db.get_item_by_id(item_id)
        assert row.title == "Unknown"

    async def test_bulk(self, db: LibraryDb) -> None:
        items = [movie(f"/m/{i}.mkv", f"Movie {i}") for i in range(10)]

        assert await db.upsert_items(items) == 10
        assert await db.count() == 10

    async def test_get_by_path(self, db: LibraryDb) -> None:
        await db.upsert_item(movie("/m/findme.mkv", "Find Me"))

        row = await db.get_item_by_path("/m/findme.mkv")
        assert row is not None
        assert row.title == "Find Me"
        assert await db.get_item_by_path("/m/missing.mkv") is None

    async def test_write_failure_raises_store_error(self, db: LibraryDb) -> None:
        conn = db._require_conn()
        await conn.execute("DROP TABLE media_items;")

        with pytest.raises(StoreWriteError):
            await db.upsert_item(movie("/m/a.mkv", "A"))

    async def test_interrupted_write_is_rolled_back(self, db: LibraryDb) -> None:
        with pytest.raises(asyncio.CancelledError):
            async with db._writing("test insert") as conn:
                await conn.execute(
                    "INSERT INTO media_items (file_path, media_type, title, date_added) "
                    "VALUES ('/m/half.mkv', 'movie', 'Half', 1.0);"
                )
                raise asyncio.CancelledError

        # The next write commits; the interrupted insert must not ride along.
        await db.upsert_item(movie("/m/a.mkv", "A"))

        assert await db.count() == 1
        assert await db.get_item_by_path("/m/half.mkv") is None


# =============================================================================
# Queries
# =============================================================================


class TestQueries:
    """Tests for filter / sort / paginate."""

    @pytest.fixture
    async def populated(self, db: LibraryDb) -> LibraryDb:
        await db.upsert_item(movie("/m/matrix.mkv", "The Matrix", year=1999, rating=8.7, genres=("Action", "Sci-Fi")))
        await db.upsert_item(movie("/m/inception.mkv", "Inception", year=2010, rating=8.8, genres=("Sci-Fi",)))
        await db.upsert_item(movie("/m/reloaded.mkv", "The Matrix Reloaded", year=2003, genres=("action",)))
        await db.upsert_item(
            UpsertMediaItem(
                file_path="/tv/bb.s01e01.mkv",
                media_type="tvshow",
                title="Breaking Bad",
                season=1,
                episode=1,
                genres=("Drama",),
            )
        )
        return db

    async def test_default_sort_is_newest_first(self, populated: LibraryDb) -> None:
        rows = await populated.get_all()
        assert [r.file_path for r in rows] == [
            "/tv/bb.s01e01.mkv",
            "/m/reloaded.mkv",
            "/m/inception.mkv",
            "/m/matrix.mkv",
        ]

    async def test_sort_by_year_nulls_last(self, populated: LibraryDb) -> None:
        rows = await populated.get_all(LibraryFilter(sorter="year"))
        assert [r.year for r in rows] == [2010, 2003, 1999, None]

    async def test_sort_by_title(self, populated: LibraryDb) -> None:
        rows = await populated.get_all(LibraryFilter(sorter="title"))
        assert [r.title for r in rows] == [
            "Breaking Bad",
            "Inception",
            "The Matrix",
            "The Matrix Reloaded",
        ]

    async def test_sort_by_rating(self, populated: LibraryDb) -> None:
        rows = await populated.get_all(LibraryFilter(sorter="rating", type="movie"))
        assert [r.title for r in rows] == ["Inception", "The Matrix", "The Matrix Reloaded"]

    async def test_filter_by_type(self, populated: LibraryDb) -> None:
        rows = await populated.get_all(LibraryFilter(type="tvshow"))
        assert [r.title for r in rows] == ["Breaking Bad"]
        assert await populated.count(LibraryFilter(type="movie")) == 3

    async def test_filter_by_genre_case_insensitive(self, populated: LibraryDb) -> None:
        rows = await populated.get_all(LibraryFilter(genre="ACTION", sorter="title"))
        assert [r.title for r in rows] == ["The Matrix", "The Matrix Reloaded"]

    async def test_search(self, populated: LibraryDb) -> None:
        rows = await populated.get_all(LibraryFilter(search="matrix", sorter="title"))
        assert [r.title for r in rows] == ["The Matrix", "The Matrix Reloaded"]
        assert await populated.count(LibraryFilter(search="%")) == 0

    async def test_pagination(self, populated: LibraryDb) -> None:
        page = await populated.get_all(LibraryFilter(sorter="title", limit=2, offset=1))
        assert [r.title for r in page] == ["Inception", "The Matrix"]
        assert await populated.count(LibraryFilter(limit=2, offset=1)) == 4

    async def test_get_all_without_filter_is_not_paginated(self, db: LibraryDb) -> None:
        await db.upsert_items([movie(f"/m/{i:03d}.mkv", str(i)) for i in range(60)])

        assert len(await db.get_all()) == 60
        assert len(await db.get_all(LibraryFilter())) == 50

    async def test_genres(self, populated: LibraryDb) -> None:
        assert await populated.list_genres() == ["Action", "Drama", "Sci-Fi"]
        assert await populated.list_genres("tvshow") == ["Drama"]

    async def test_stats(self, populated: LibraryDb) -> None:
        stats = await populated.stats()
        assert stats["total"] == 4
        assert stats["movies"] == 3
        assert stats["tvshows"] == 1
        assert stats["other"] == 0

    async def test_paths_under(self, populated: LibraryDb) -> None:
        paths = await populated.list_paths_under("/m")
        assert sorted(paths) == ["/m/inception.mkv", "/m/matrix.mkv", "/m/reloaded.mkv"]
        assert await populated.list_paths_under("/m/inc") == []


# =============================================================================
# Deletes / Playback / History
# =============================================================================


class TestMaintenance:
    """Tests for deletes, playback bookkeeping and scan history."""

    async def test_delete(self, db: LibraryDb) -> None:
        item_id = await db.upsert_item(movie("/m/a.mkv", "A"))
        await db.upsert_item(movie("/m/b.mkv", "B"))

        assert await db.delete_item(item_id) is True
        assert await db.delete_item(item_id) is False
        assert await db.delete_items_by_paths(["/m/b.mkv", "/m/missing.mkv"]) == 1
        assert await db.delete_items_by_paths([]) == 0
        assert await db.count() == 0

    async def test_clear(self, db: LibraryDb) -> None:
        await db.upsert_items([movie(f"/m/{i}.mkv", str(i)) for i in range(3)])

        assert await db.clear() == 3
        assert await db.count() == 0

    async def test_record_playback(self, db: LibraryDb) -> None:
        item_id = await db.upsert_item(movie("/m/a.mkv", "A"))

        assert await db.record_playback(item_id)
        assert await db.record_playback(item_id)
        assert await db.record_playback(999) is False

        row = await db.get_item_by_id(item_id)
        assert row.play_count == 2
        assert row.last_played is not None

    async def test_scan_history(self, db: LibraryDb) -> None:
        first = await db.start_scan_record(["/m"])
        await db.finish_scan_record(first, status="completed", found=3, matched=2, errors=1)
        second = await db.start_scan_record(["/m", "/tv"])

        history = await db.list_scan_history()
        assert [h.id for h in history] == [second, first]
        assert history[0].status == "running"
        assert history[0].folders == ("/m", "/tv")
        assert history[0].end_time is None
        assert history[1].status == "completed"
        assert (history[1].items_found, history[1].items_matched, history[1].errors) == (3, 2, 1)

        assert len(await db.list_scan_history(limit=1)) == 1

        assert await db.discard_scan_record(second) is True
        assert await db.discard_scan_record(second) is False
        assert [h.id for h in await db.list_scan_history()] == [first]


def test_filter_from_mapping() -> None:
    f = LibraryFilter.from_mapping(
        {"type": "TV Shows", "genre": "All", "sort": "play count", "limit": "20", "offset": "40"}
    )
    assert f == LibraryFilter(type="tvshow", genre=None, sorter="play_count", limit=20, offset=40)

    assert LibraryFilter.from_mapping({"sorter": "trending"}).sorter == "date_added"
    assert LibraryFilter.from_mapping(None) == LibraryFilter()

    with pytest.raises(ValueError):
        LibraryFilter.from_mapping({"type": "podcast"})
    with pytest.raises(ValueError):
        LibraryFilter.from_mapping({"limit": 0})

