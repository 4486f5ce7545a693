"""
Tests for marquee.web (FastAPI app and REST routes).

These tests verify:
- FastAPI application setup (health, status)
- Catalog browsing endpoints and filter validation
- Item maintenance endpoints
- Scan control endpoints
"""

from __future__ import annotations

from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from marquee.core.db.models import UpsertMediaItem
from marquee.core.library import MediaLibrary
from marquee.core.library_db import LibraryDb
from marquee.core.metadata import MetadataResolver
from marquee.core.scanner import LibraryScanner
from marquee.web.server import WebServer

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def library(db: LibraryDb, resolver: MetadataResolver, media_root: Path) -> MediaLibrary:
    """Create a MediaLibrary with in-memory DB."""
    lib = MediaLibrary(
        db=db,
        scanner=LibraryScanner(db=db, resolver=resolver),
        resolver=resolver,
        default_folders=[media_root],
    )
    await lib.initialize()
    return lib


@pytest.fixture
async def web_server(library: MediaLibrary) -> WebServer:
    """Create a WebServer instance for testing."""
    return WebServer(media_library=library)


@pytest.fixture
async def client(web_server: WebServer) -> AsyncClient:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=web_server.app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def scanned(library: MediaLibrary) -> MediaLibrary:
    await library.scan()
    return library


# =============================================================================
# Health and Status
# =============================================================================


class TestServerStatus:
    """Tests for the health and status endpoints."""

    async def test_health_check(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "server": "marquee"}

    async def test_server_status(self, client: AsyncClient) -> None:
        response = await client.get("/api/status")
        assert response.status_code == 200
        data = response.json()
        assert data["server"] == "marquee"
        assert data["version"] == "0.1.0"
        assert data["library_initialized"] is True
        assert data["scanning"] is False

    async def test_not_initialized_is_503(
        self, db: LibraryDb, resolver: MetadataResolver
    ) -> None:
        lib = MediaLibrary(db=db, scanner=LibraryScanner(db=db, resolver=resolver), resolver=resolver)
        server = WebServer(media_library=lib)
        transport = ASGITransport(app=server.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/api/library")
        assert response.status_code == 503


# =============================================================================
# Library
# =============================================================================


class TestLibraryEndpoints:
    """Tests for catalog browsing."""

    async def test_list(self, client: AsyncClient, scanned: MediaLibrary) -> None:
        response = await client.get("/api/library", params={"sorter": "title"})
        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 3
        assert data["total"] == 3
        assert [i["title"] for i in data["items"]] == ["Breaking Bad", "Inception", "The Matrix"]
        assert data["items"][2]["imdb_id"] == "tt0133093"

    async def test_list_filters(self, client: AsyncClient, scanned: MediaLibrary) -> None:
        response = await client.get(
            "/api/library", params={"type": "Movies", "sorter": "year", "limit": 1}
        )
        data = response.json()
        assert data["count"] == 1
        assert data["total"] == 2
        assert data["items"][0]["year"] == 2010

        response = await client.get("/api/library", params={"search": "matrix"})
        assert [i["title"] for i in response.json()["items"]] == ["The Matrix"]

    async def test_invalid_filter_is_400(self, client: AsyncClient) -> None:
        response = await client.get("/api/library", params={"type": "podcast"})
        assert response.status_code == 400

        response = await client.get("/api/library", params={"limit": 0})
        assert response.status_code == 400

    async def test_genres_and_stats(self, client: AsyncClient, scanned: MediaLibrary) -> None:
        response = await client.get("/api/library/genres", params={"type": "tvshow"})
        assert response.json() == {"count": 1, "genres": ["Drama"]}

        response = await client.get("/api/library/stats")
        stats = response.json()
        assert stats["total"] == 3
        assert stats["movies"] == 2
        assert stats["tvshows"] == 1
        assert stats["scanning"] is False


# =============================================================================
# Items
# =============================================================================


class TestItemEndpoints:
    """Tests for single-item endpoints."""

    @pytest.fixture
    async def item_id(self, db: LibraryDb, library: MediaLibrary) -> int:
        return await db.upsert_item(
            UpsertMediaItem(
                file_path="/m/Heat.1995.mkv",
                media_type="movie",
                title="Heat",
                year=1995,
                original_filename="Heat.1995.mkv",
            )
        )

    async def test_get_item(self, client: AsyncClient, item_id: int) -> None:
        response = await client.get(f"/api/library/items/{item_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["item"]["title"] == "Heat"
        assert data["display"]["imdb_id"] == f"local_{item_id}"

        response = await client.get("/api/library/items/999")
        assert response.status_code == 404

    async def test_played(self, client: AsyncClient, item_id: int) -> None:
        response = await client.post(f"/api/library/items/{item_id}/played")
        assert response.status_code == 200
        assert response.json()["item"]["play_count"] == 1

        response = await client.post("/api/library/items/999/played")
        assert response.status_code == 404

    async def test_update_metadata(self, client: AsyncClient, item_id: int) -> None:
        response = await client.patch(
            f"/api/library/items/{item_id}",
            json={"title": "Heat (1995)", "rating": 8, "genres": ["Crime", "Drama"]},
        )
        assert response.status_code == 200
        item = response.json()["item"]
        assert item["title"] == "Heat (1995)"
        assert item["rating"] == 8.0
        assert item["genres"] == ["Crime", "Drama"]
        assert item["year"] == 1995

    async def test_update_metadata_validation(self, client: AsyncClient, item_id: int) -> None:
        for body in ({}, {"colour": "red"}, {"year": "1995"}, {"rating": 11}, {"genres": "Crime"}):
            response = await client.patch(f"/api/library/items/{item_id}", json=body)
            assert response.status_code == 400, body

        response = await client.patch("/api/library/items/999", json={"title": "X"})
        assert response.status_code == 404

    async def test_refresh(self, client: AsyncClient, item_id: int) -> None:
        response = await client.post(f"/api/library/items/{item_id}/refresh")
        assert response.status_code == 200
        assert response.json()["refreshed"] is False

        response = await client.post("/api/library/items/999/refresh")
        assert response.status_code == 404

    async def test_delete(self, client: AsyncClient, item_id: int) -> None:
        response = await client.delete(f"/api/library/items/{item_id}")
        assert response.status_code == 200
        assert response.json() == {"removed": True, "id": item_id}

        response = await client.delete(f"/api/library/items/{item_id}")
        assert response.status_code == 404

    async def test_clear(self, client: AsyncClient, item_id: int) -> None:
        response = await client.delete("/api/library")
        assert response.status_code == 200
        assert response.json() == {"removed": 1}


# =============================================================================
# Scanning
# =============================================================================


class TestScanEndpoints:
    """Tests for scan control."""

    async def test_start_scan(self, client: AsyncClient, library: MediaLibrary) -> None:
        response = await client.post("/api/scan", json={})
        assert response.status_code == 202
        assert response.json()["started"] is True

        response = await client.post("/api/scan", json={})
        assert response.status_code == 409

        await library.wait_for_scan()

        response = await client.get("/api/scan/status")
        status = response.json()
        assert status["state"] == "completed"
        assert status["last_results"]["found"] == 3

        response = await client.get("/api/scan/history")
        data = response.json()
        assert data["count"] == 1
        assert data["scans"][0]["status"] == "completed"

    async def test_start_scan_with_folders(
        self, client: AsyncClient, library: MediaLibrary, tmp_path: Path
    ) -> None:
        empty = tmp_path / "empty"
        empty.mkdir()

        response = await client.post("/api/scan", json={"folders": [str(empty)]})
        assert response.status_code == 202
        assert response.json()["status"]["folders"] == [str(empty)]

        results = await library.wait_for_scan()
        assert results.found == 0

    async def test_bad_folders_payload(self, client: AsyncClient) -> None:
        response = await client.post("/api/scan", json={"folders": "not-a-list"})
        assert response.status_code == 400

    async def test_no_folders_configured(self, db: LibraryDb, resolver: MetadataResolver) -> None:
        lib = MediaLibrary(db=db, scanner=LibraryScanner(db=db, resolver=resolver), resolver=resolver)
        await lib.initialize()
        transport = ASGITransport(app=WebServer(media_library=lib).app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post("/api/scan")
        assert response.status_code == 400

    async def test_cancel_when_idle(self, client: AsyncClient) -> None:
        response = await client.post("/api/scan/cancel")
        assert response.status_code == 200
        assert response.json() == {"cancelled": False}

    async def test_history_limit_validation(self, client: AsyncClient) -> None:
        response = await client.get("/api/scan/history", params={"limit": 0})
        assert response.status_code == 422
