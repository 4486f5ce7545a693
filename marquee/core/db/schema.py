"""
Database schema + migrations for Marquee.

- Connection management and the public `LibraryDb` facade stay in `library_db.py`
- Schema creation, schema versioning, and forward-only migrations live here

Design notes:
- We use SQLite `PRAGMA user_version` as the schema version.
- Migrations are forward-only (no downgrade support).
- Keep migrations small and explicit; for huge refactors prefer a new DB.
"""

from __future__ import annotations

from typing import Final

import aiosqlite

# Bump when you change the schema and add a migration in `migrate()`.
SCHEMA_VERSION: Final[int] = 2


async def ensure_schema(conn: aiosqlite.Connection) -> None:
    """
    Create or migrate schema to current version.

    This function assumes:
    - `conn` is an open aiosqlite connection
    - `conn.row_factory` is configured by the caller if desired
    """
    cursor = await conn.execute("PRAGMA user_version;")
    row = await cursor.fetchone()
    current = int(row[0]) if row is not None else 0

    if current > SCHEMA_VERSION:
        raise RuntimeError(
            f"Database schema version {current} is newer than supported {SCHEMA_VERSION}."
        )

    if current == SCHEMA_VERSION:
        return

    await migrate(conn, from_version=current, to_version=SCHEMA_VERSION)
    await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION};")
    await conn.commit()


async def migrate(conn: aiosqlite.Connection, *, from_version: int, to_version: int) -> None:
    """
    Perform forward-only migrations.

    Keep migrations small. If you need a big refactor, create a new DB.
    """
    # v0 -> v1
    if from_version == 0 and to_version >= 1:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS media_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                file_path TEXT NOT NULL UNIQUE,
                file_size INTEGER,
                media_type TEXT NOT NULL,

                title TEXT NOT NULL,
                year INTEGER,
                season INTEGER,
                episode INTEGER,

                external_id TEXT,
                tmdb_id INTEGER,
                poster_url TEXT,
                backdrop_url TEXT,
                genres TEXT NOT NULL DEFAULT '[]',
                rating REAL,
                synopsis TEXT,
                runtime INTEGER,

                last_modified REAL,
                last_played REAL,
                play_count INTEGER NOT NULL DEFAULT 0,
                date_added REAL NOT NULL,
                original_filename TEXT
            )
            """
        )

        # Indexes: tuned for the collection's filters and sorters.
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_media_items_type ON media_items(media_type);"
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_media_items_title ON media_items(title);"
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_media_items_date_added ON media_items(date_added);"
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_media_items_external_id ON media_items(external_id);"
        )
        await conn.commit()
        from_version = 1

    # v1 -> v2
    if from_version == 1 and to_version >= 2:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS scan_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                folders TEXT NOT NULL DEFAULT '[]',
                status TEXT NOT NULL DEFAULT 'running',
                items_found INTEGER NOT NULL DEFAULT 0,
                items_matched INTEGER NOT NULL DEFAULT 0,
                errors INTEGER NOT NULL DEFAULT 0,
                removed INTEGER NOT NULL DEFAULT 0,
                start_time REAL NOT NULL,
                end_time REAL
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_scan_history_start ON scan_history(start_time);"
        )
        await conn.commit()
        from_version = 2

    if from_version != to_version:
        raise RuntimeError(f"No migration path from {from_version} to {to_version}.")
