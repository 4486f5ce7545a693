"""
REST API Routes for Marquee.

Provides REST endpoints for the web UI and external integrations:
- /api/status: Server status
- /api/library/*: Catalog browsing, item maintenance
- /api/scan/*: Scan control and history
"""

from __future__ import annotations

import logging
from dataclasses import fields
from typing import Any

from fastapi import APIRouter, Body, FastAPI, HTTPException, Query

from marquee import __version__
from marquee.core import NotFoundError
from marquee.core.collection import to_display_item
from marquee.core.db.models import LibraryFilter
from marquee.core.library import MediaLibrary, MediaLibraryError, MediaLibraryNotReadyError
from marquee.core.metadata import MetadataResult

logger = logging.getLogger(__name__)


def _media_type(value: str | None) -> str | None:
    try:
        return LibraryFilter.from_mapping({"type": value}).type
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


_METADATA_FIELDS = frozenset(f.name for f in fields(MetadataResult))
_INT_FIELDS = ("year", "tmdb_id", "runtime")
_TEXT_FIELDS = ("title", "external_id", "poster_url", "backdrop_url", "synopsis")


def _metadata_from_body(body: dict[str, Any]) -> MetadataResult:
    """Validate a manual metadata override (any subset of the metadata fields)."""
    unknown = sorted(set(body) - _METADATA_FIELDS)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown metadata fields: {', '.join(unknown)}")
    if not body:
        raise HTTPException(status_code=400, detail="No metadata fields given")

    values = dict(body)
    for key in _TEXT_FIELDS:
        if values.get(key) is not None and not isinstance(values[key], str):
            raise HTTPException(status_code=400, detail=f"{key} must be a string")
    for key in _INT_FIELDS:
        value = values.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            raise HTTPException(status_code=400, detail=f"{key} must be an integer")

    rating = values.get("rating")
    if rating is not None:
        if isinstance(rating, bool) or not isinstance(rating, (int, float)) or not 0 <= rating <= 10:
            raise HTTPException(status_code=400, detail="rating must be a number from 0 to 10")
        values["rating"] = float(rating)

    genres = values.get("genres")
    if genres is not None:
        if not isinstance(genres, list) or not all(isinstance(g, str) for g in genres):
            raise HTTPException(status_code=400, detail="genres must be a list of strings")
        values["genres"] = tuple(genres)
    else:
        values.pop("genres", None)

    return MetadataResult(**values)


def create_api_router(library: MediaLibrary) -> APIRouter:
    """Build the `/api` router bound to one `MediaLibrary`."""
    router = APIRouter(tags=["api"])

    # =========================================================================
    # Server Status
    # =========================================================================

    @router.get("/api/status")
    async def server_status() -> dict[str, Any]:
        """Get server status and basic info."""
        return {
            "server": "marquee",
            "version": __version__,
            "library_initialized": library.initialized,
            "scanning": library.is_scanning,
            "scan_state": library.scan_status.state,
        }

    # =========================================================================
    # Library
    # =========================================================================

    @router.get("/api/library")
    async def list_library(
        type: str | None = Query(default=None),
        genre: str | None = Query(default=None),
        search: str | None = Query(default=None),
        sorter: str | None = Query(default=None),
        limit: int = Query(default=50),
        offset: int = Query(default=0),
    ) -> dict[str, Any]:
        """Filtered, sorted, paginated catalog in display shape."""
        try:
            filters = LibraryFilter.from_mapping(
                {
                    "type": type,
                    "genre": genre,
                    "search": search,
                    "sorter": sorter,
                    "limit": limit,
                    "offset": offset,
                }
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        items = await library.fetch(filters)
        total = await library.count(filters)
        return {"count": len(items), "total": total, "offset": offset, "items": items}

    @router.delete("/api/library")
    async def clear_library() -> dict[str, Any]:
        try:
            removed = await library.clear_library()
        except MediaLibraryNotReadyError:
            raise
        except MediaLibraryError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        return {"removed": removed}

    @router.get("/api/library/genres")
    async def list_genres(type: str | None = Query(default=None)) -> dict[str, Any]:
        genres = await library.get_genres(_media_type(type))
        return {"count": len(genres), "genres": genres}

    @router.get("/api/library/stats")
    async def library_stats() -> dict[str, Any]:
        return await library.get_stats()

    @router.get("/api/library/items/{item_id}")
    async def get_item(item_id: int) -> dict[str, Any]:
        try:
            item = await library.get_item(item_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        return {"item": item.to_dict(), "display": to_display_item(item)}

    @router.delete("/api/library/items/{item_id}")
    async def delete_item(item_id: int) -> dict[str, Any]:
        if not await library.remove_item(item_id):
            raise HTTPException(status_code=404, detail=f"Library item {item_id} not found")
        return {"removed": True, "id": item_id}

    @router.patch("/api/library/items/{item_id}")
    async def update_item(item_id: int, body: dict[str, Any] = Body(...)) -> dict[str, Any]:
        """Manually override metadata; fields not given keep their stored values."""
        metadata = _metadata_from_body(body)
        try:
            item = await library.update_metadata(item_id, metadata)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        return {"item": item.to_dict()}

    @router.post("/api/library/items/{item_id}/refresh")
    async def refresh_item(item_id: int) -> dict[str, Any]:
        try:
            refreshed = await library.refresh_metadata(item_id)
            item = await library.get_item(item_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        return {"refreshed": refreshed, "item": item.to_dict()}

    @router.post("/api/library/items/{item_id}/played")
    async def mark_played(item_id: int) -> dict[str, Any]:
        try:
            item = await library.record_playback(item_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        return {"item": item.to_dict()}

    # =========================================================================
    # Scanning
    # =========================================================================

    @router.post("/api/scan", status_code=202)
    async def start_scan(request: dict[str, Any] | None = Body(default=None)) -> dict[str, Any]:
        """Start a background scan of `folders` (or the configured library folders)."""
        folders = (request or {}).get("folders")
        if folders is not None and (
            not isinstance(folders, list) or not all(isinstance(f, str) for f in folders)
        ):
            raise HTTPException(status_code=400, detail="folders must be a list of strings")

        try:
            started = await library.start_scan(folders)
        except MediaLibraryNotReadyError:
            raise
        except MediaLibraryError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        if not started:
            raise HTTPException(status_code=409, detail="A scan is already running")

        return {"started": True, "status": library.scan_status.to_dict()}

    @router.post("/api/scan/cancel")
    async def cancel_scan() -> dict[str, Any]:
        return {"cancelled": library.cancel_scan()}

    @router.get("/api/scan/status")
    async def scan_status() -> dict[str, Any]:
        return library.scan_status.to_dict()

    @router.get("/api/scan/history")
    async def scan_history(limit: int = Query(default=10, ge=1, le=100)) -> dict[str, Any]:
        rows = await library.get_scan_history(limit)
        return {"count": len(rows), "scans": [r.to_dict() for r in rows]}

    return router


def register_api_routes(app: FastAPI, media_library: MediaLibrary) -> None:
    """
    Register API routes with the FastAPI app.

    Args:
        app: FastAPI application instance
        media_library: MediaLibrary backing every endpoint
    """
    app.include_router(create_api_router(media_library))
