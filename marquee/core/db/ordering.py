"""
ORDER BY clause helper for media item queries.

Important:
- The returned strings are *static SQL fragments* selected from a small
  whitelist. Do NOT concatenate user input into ORDER BY.
- `LibraryFilter` already validates the sorter; unknown values still fall back
  to the default here.

Convention: `title` sorts ascending, every other key descending (newest,
highest, most played first) with NULLs last. `file_path` breaks ties so
pagination is stable.
"""

from __future__ import annotations

from typing import Literal

ItemsOrderBy = Literal[
    "date_added",
    "title",
    "year",
    "rating",
    "last_played",
    "play_count",
]

_DESCENDING_COLUMNS = {
    "date_added": "m.date_added",
    "year": "m.year",
    "rating": "m.rating",
    "last_played": "m.last_played",
    "play_count": "m.play_count",
}


def items_order_clause(sorter: str) -> str:
    """Return an ORDER BY clause for media item list queries."""
    if sorter == "title":
        return "ORDER BY m.title COLLATE NOCASE ASC, m.file_path ASC"

    column = _DESCENDING_COLUMNS.get(sorter, _DESCENDING_COLUMNS["date_added"])
    return f"ORDER BY {column} IS NULL ASC, {column} DESC, m.file_path ASC"
