"""
Shared fixtures: in-memory catalog and a canned metadata provider.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from marquee.core.filename_parser import MediaType
from marquee.core.library_db import LibraryDb
from marquee.core.metadata import NO_MATCH, MetadataProvider, MetadataResolver, MetadataResult

CATALOG = {
    "the matrix": MetadataResult(
        title="The Matrix",
        year=1999,
        external_id="tt0133093",
        tmdb_id=603,
        genres=("Action", "Science Fiction"),
        rating=8.2,
        runtime=136,
        poster_url="https://image.example/matrix.jpg",
    ),
    "breaking bad": MetadataResult(
        title="Breaking Bad",
        year=2008,
        external_id="tt0903747",
        genres=("Drama",),
        rating=8.9,
    ),
}


class CatalogProvider(MetadataProvider):
    """Provider that answers title lookups from a fixed dictionary."""

    name = "catalog"

    def __init__(self, entries: dict[str, MetadataResult]) -> None:
        super().__init__(timeout=5.0)
        self.entries = dict(entries)
        self.calls: list[str] = []

    async def _lookup_by_title_year(
        self, title: str, year: int | None, media_type: MediaType
    ) -> MetadataResult:
        self.calls.append(title)
        return self.entries.get(title.casefold(), NO_MATCH)

    async def _lookup_by_id(self, external_id: str) -> MetadataResult:
        return NO_MATCH


def touch(root: Path, name: str, size: int = 16) -> Path:
    """Create a file of `size` bytes under `root` (parents included)."""
    path = root / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\0" * size)
    return path


@pytest.fixture
async def db() -> LibraryDb:
    """Create an in-memory database for testing."""
    db = LibraryDb(":memory:")
    await db.open()
    await db.ensure_schema()
    yield db
    await db.close()


@pytest.fixture
def catalog() -> CatalogProvider:
    return CatalogProvider(CATALOG)


@pytest.fixture
def resolver(catalog: CatalogProvider) -> MetadataResolver:
    return MetadataResolver([catalog])


@pytest.fixture
def media_root(tmp_path: Path) -> Path:
    """A small folder of media files (plus some noise)."""
    root = tmp_path / "media"
    touch(root, "The.Matrix.1999.1080p.mkv", size=2048)
    touch(root, "Inception.2010.mkv")
    touch(root, "Breaking.Bad.S01E01.mkv")
    touch(root, "holiday.mp4")
    touch(root, "notes.txt")
    return root.resolve()
