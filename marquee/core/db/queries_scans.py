"""
Scan history queries used by `marquee.core.library_db.LibraryDb`.

One row per scan run: inserted as `running` when the run starts and
finalized with counters and a terminal status when it ends.
"""

from __future__ import annotations

import json
from typing import Sequence

import aiosqlite

from marquee.core.db.models import ScanHistoryRow


def _row_to_scan(row: aiosqlite.Row) -> ScanHistoryRow:
    try:
        folders = tuple(str(f) for f in json.loads(row["folders"] or "[]"))
    except ValueError:
        folders = ()
    return ScanHistoryRow(
        id=int(row["id"]),
        folders=folders,
        status=str(row["status"]),
        items_found=int(row["items_found"]),
        items_matched=int(row["items_matched"]),
        errors=int(row["errors"]),
        removed=int(row["removed"]),
        start_time=float(row["start_time"]),
        end_time=row["end_time"],
    )


async def start_scan_record(
    conn: aiosqlite.Connection, folders: Sequence[str], *, now: float
) -> int:
    cursor = await conn.execute(
        "INSERT INTO scan_history (folders, status, start_time) VALUES (?, 'running', ?);",
        (json.dumps(list(folders)), now),
    )
    return int(cursor.lastrowid)


async def finish_scan_record(
    conn: aiosqlite.Connection,
    scan_id: int,
    *,
    status: str,
    found: int,
    matched: int,
    errors: int,
    removed: int,
    now: float,
) -> bool:
    cursor = await conn.execute(
        """
        UPDATE scan_history
        SET status = ?, items_found = ?, items_matched = ?, errors = ?, removed = ?, end_time = ?
        WHERE id = ?;
        """,
        (status, int(found), int(matched), int(errors), int(removed), now, int(scan_id)),
    )
    return cursor.rowcount > 0


async def list_scan_history(conn: aiosqlite.Connection, *, limit: int) -> list[ScanHistoryRow]:
    cursor = await conn.execute(
        "SELECT * FROM scan_history ORDER BY start_time DESC, id DESC LIMIT ?;",
        (int(limit),),
    )
    rows = await cursor.fetchall()
    return [_row_to_scan(r) for r in rows]


async def delete_scan_record(conn: aiosqlite.Connection, scan_id: int) -> bool:
    cursor = await conn.execute("DELETE FROM scan_history WHERE id = ?;", (int(scan_id),))
    return cursor.rowcount > 0
