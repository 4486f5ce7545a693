from __future__ import annotations

import asyncio
import inspect
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import Any, Iterable, Mapping

from marquee.core import NotFoundError
from marquee.core.collection import LibraryCollection
from marquee.core.db.models import LibraryFilter, MediaItemRow, ScanHistoryRow, UpsertMediaItem
from marquee.core.events import EventBus, LibraryItemEvent, LibraryScanEvent
from marquee.core.filename_parser import FilenameParser
from marquee.core.library_db import LibraryDb
from marquee.core.metadata.base import MetadataResult
from marquee.core.metadata.resolver import MetadataResolver
from marquee.core.scanner import (
    FileInfo,
    LibraryScanner,
    ProgressCallback,
    ScanError,
    ScanFinishedEvent,
    ScanResults,
    ScanState,
    build_upsert,
)

logger = logging.getLogger(__name__)

FAILED_SCAN_MESSAGE = (
    "Library scan failed. The library may be incomplete; it is safe to run the scan again."
)


@dataclass
class ScanStatus:
    """Status of a running or completed scan."""

    state: str = ScanState.IDLE.value
    is_running: bool = False
    folders: list[str] = field(default_factory=list)
    files_found: int = 0
    total_estimate: int = 0
    current_file: str = ""
    started_at: float | None = None
    finished_at: float | None = None
    message: str = ""
    last_results: ScanResults | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "is_running": self.is_running,
            "folders": list(self.folders),
            "files_found": self.files_found,
            "total_estimate": self.total_estimate,
            "current_file": self.current_file,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "message": self.message,
            "last_results": self.last_results.to_dict() if self.last_results else None,
        }


class MediaLibraryError(RuntimeError):
    """Base error for MediaLibrary operations."""


class MediaLibraryNotReadyError(MediaLibraryError):
    """Raised when operations are attempted before the library is initialized."""


def summarize(state: ScanState, results: ScanResults) -> str:
    """One-line, user-facing summary of a finished run."""
    if state is ScanState.FAILED:
        return FAILED_SCAN_MESSAGE
    text = f"{results.found} items found, {results.matched} matched"
    if results.errors:
        text += f", {len(results.errors)} files skipped"
    if results.removed:
        text += f", {results.removed} removed"
    prefix = "Scan cancelled" if state is ScanState.CANCELLED else "Scan complete"
    return f"{prefix}: {text}"


class MediaLibrary:
    """
    High-level facade for the Marquee media library.

    Ties together:
    - `LibraryDb` for persistence
    - `LibraryScanner` for scan runs
    - `MetadataResolver` for single-item metadata refresh
    - `LibraryCollection` for the read side
    - an `EventBus` to tell listeners how scans are going

    Everything is injected; the facade owns none of the resources it is given.
    """

    def __init__(
        self,
        *,
        db: LibraryDb,
        scanner: LibraryScanner,
        resolver: MetadataResolver,
        parser: FilenameParser | None = None,
        collection: LibraryCollection | None = None,
        event_bus: EventBus | None = None,
        default_folders: Iterable[str | Path] = (),
    ) -> None:
        self._db = db
        self._scanner = scanner
        self._resolver = resolver
        self._parser = parser or FilenameParser()
        self._collection = collection or LibraryCollection(db)
        self._event_bus = event_bus or EventBus()
        self._default_folders = [str(f) for f in default_folders]
        self._initialized = False
        self._scan_status = ScanStatus()
        self._scan_task: asyncio.Task[None] | None = None
        self._cancel_pending = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def collection(self) -> LibraryCollection:
        return self._collection

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def default_folders(self) -> list[str]:
        return list(self._default_folders)

    @property
    def scan_status(self) -> ScanStatus:
        """Get the current scan status."""
        return self._scan_status

    @property
    def is_scanning(self) -> bool:
        """Check if a scan is currently running."""
        return self._scan_status.is_running

    async def initialize(self) -> None:
        """
        Initialize underlying storage and prepare the library.

        Contract:
        - `LibraryDb` must already be open.
        - schema/migrations are ensured here for convenience.
        """
        if not self._db.is_open:
            raise MediaLibraryError(
                "LibraryDb is not open. Open it before initializing MediaLibrary."
            )

        await self._db.ensure_schema()
        self._initialized = True

    # ---- Scanning ----

    async def scan(
        self,
        folders: Iterable[str | Path] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ScanResults | None:
        """
        Scan `folders` (or the configured default folders) and wait for the result.

        Returns None if a scan is already running. Raises `ScanError` if the
        catalog could not be written.
        """
        self._require_initialized()
        scan_folders = self._resolve_folders(folders)
        if self.is_scanning:
            logger.warning("Scan already in progress")
            return None
        self._mark_running(scan_folders)
        return await self._run_scan(scan_folders, on_progress)

    async def start_scan(self, folders: Iterable[str | Path] | None = None) -> bool:
        """
        Start a background scan.

        Returns:
            True if scan started, False if already running.
        """
        self._require_initialized()
        scan_folders = self._resolve_folders(folders)

        if self.is_scanning:
            logger.warning("Scan already in progress")
            return False

        self._mark_running(scan_folders)
        self._scan_task = asyncio.create_task(self._run_background(scan_folders))
        return True

    def cancel_scan(self) -> bool:
        """Request cancellation of the running scan. False if none is running."""
        if not self.is_scanning:
            return False
        if not self._scanner.cancel_scan():
            # The run has not reached the scanner yet; it checks this flag first.
            self._cancel_pending = True
            logger.info("Scan cancellation requested before the scan started")
        return True

    async def wait_for_scan(self) -> ScanResults | None:
        """Wait for a background scan (if any) and return the last results."""
        if self._scan_task is not None:
            await self._scan_task
        return self._scan_status.last_results

    def _resolve_folders(self, folders: Iterable[str | Path] | None) -> list[str]:
        scan_folders = [str(f) for f in folders] if folders is not None else self._default_folders
        if not scan_folders:
            raise MediaLibraryError("No folders given and no library folders configured.")
        return scan_folders

    def _mark_running(self, folders: list[str]) -> None:
        self._cancel_pending = False
        self._scan_status = ScanStatus(
            state=ScanState.SCANNING.value,
            is_running=True,
            folders=list(folders),
            started_at=time.time(),
            last_results=self._scan_status.last_results,
        )

    async def _run_background(self, folders: list[str]) -> None:
        try:
            await self._run_scan(folders, None)
        except ScanError as e:
            logger.error("Background scan failed: %s", e)
        except Exception:
            logger.exception("Background scan crashed")

    async def _run_scan(
        self, folders: list[str], on_progress: ProgressCallback | None
    ) -> ScanResults | None:
        status = self._scan_status
        try:
            scan_id = await self._db.start_scan_record(folders)
        except Exception:
            self._finish_status(ScanState.FAILED, None, FAILED_SCAN_MESSAGE)
            raise

        if self._scanner.is_scanning:
            await self._abandon(scan_id)
            return None

        await self._publish(LibraryScanEvent(status="started"))
        if self._cancel_pending:
            empty = ScanResults()
            await self._finish(scan_id, ScanState.CANCELLED, empty)
            return empty

        results: ScanResults | None = None
        state: ScanState | None = None

        try:
            async with aclosing(self._scanner.iter_scan(folders)) as events:
                async for event in events:
                    if isinstance(event, ScanFinishedEvent):
                        results, state = event.results, event.state
                        continue
                    status.files_found = event.files_found
                    status.total_estimate = event.total_estimate
                    status.current_file = event.current_file
                    await self._publish(
                        LibraryScanEvent(
                            status="progress",
                            scanned=event.files_found,
                            total=event.total_estimate,
                            current_path=event.current_file,
                        )
                    )
                    if on_progress is not None:
                        ret = on_progress(
                            event.files_found, event.total_estimate, event.current_file
                        )
                        if inspect.isawaitable(ret):
                            await ret
        except ScanError as e:
            await self._finish(scan_id, ScanState.FAILED, e.results, error=str(e))
            raise
        except asyncio.CancelledError:
            await self._finish(scan_id, ScanState.CANCELLED, results or ScanResults())
            raise
        except Exception as e:
            logger.error("Scan aborted: %s", e)
            await self._finish(
                scan_id,
                ScanState.FAILED,
                results or ScanResults(found=status.files_found),
                error=str(e),
            )
            raise

        if state is None:
            # The scanner yielded nothing: it was already busy with another run.
            await self._abandon(scan_id)
            return None

        await self._finish(scan_id, state, results or ScanResults())
        return results

    async def _abandon(self, scan_id: int) -> None:
        """Undo the bookkeeping of a run the scanner refused to start."""
        logger.warning("Scanner is busy with another run; scan not started")
        try:
            await self._db.discard_scan_record(scan_id)
        except Exception as e:  # noqa: BLE001
            logger.warning("Could not discard scan history row: %s", e)
        status = self._scan_status
        status.state = ScanState.IDLE.value
        status.is_running = False
        status.current_file = ""
        status.finished_at = time.time()
        status.message = "Scan not started: another scan is already running"

    async def _finish(
        self, scan_id: int, state: ScanState, results: ScanResults, *, error: str = ""
    ) -> None:
        message = summarize(state, results)
        self._finish_status(state, results, message)
        try:
            await self._db.finish_scan_record(
                scan_id,
                status=state.value,
                found=results.found,
                matched=results.matched,
                errors=len(results.errors),
                removed=results.removed,
            )
        except Exception as e:  # noqa: BLE001 - history is best effort once the run is over
            logger.warning("Could not record scan history: %s", e)

        await self._publish(
            LibraryScanEvent(
                status=state.value,
                scanned=results.found,
                total=self._scan_status.total_estimate,
                matched=results.matched,
                errors=len(results.errors),
                error=error,
            )
        )
        logger.info("%s", message)

    def _finish_status(
        self, state: ScanState, results: ScanResults | None, message: str
    ) -> None:
        status = self._scan_status
        status.state = state.value
        status.is_running = False
        status.current_file = ""
        status.finished_at = time.time()
        status.message = message
        if results is not None:
            status.last_results = results

    async def _publish(self, event: LibraryScanEvent | LibraryItemEvent) -> None:
        await self._event_bus.publish(event)

    # ---- Read side ----

    async def fetch(
        self, filters: LibraryFilter | Mapping[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Display items for the UI (see `LibraryCollection.fetch`)."""
        self._require_initialized()
        return await self._collection.fetch(filters)

    async def count(self, filters: LibraryFilter | Mapping[str, Any] | None = None) -> int:
        self._require_initialized()
        return await self._collection.count(filters)

    async def get_item(self, item_id: int) -> MediaItemRow:
        self._require_initialized()
        item = await self._db.get_item_by_id(item_id)
        if item is None:
            raise NotFoundError(f"Library item {item_id} not found")
        return item

    async def get_genres(self, media_type: str | None = None) -> list[str]:
        self._require_initialized()
        return await self._db.list_genres(media_type)

    async def get_stats(self) -> dict[str, Any]:
        self._require_initialized()
        stats = await self._db.stats()
        stats["scanning"] = self.is_scanning
        return stats

    async def get_scan_history(self, limit: int = 10) -> list[ScanHistoryRow]:
        self._require_initialized()
        if limit <= 0:
            raise ValueError("limit must be > 0")
        return await self._db.list_scan_history(limit)

    # ---- Single-item maintenance ----

    async def refresh_metadata(self, item_id: int) -> bool:
        """
        Re-parse the item's filename and look it up again.

        Returns True if new metadata was found and stored, False if the lookup
        came back empty (the stored item is left unchanged). Play count and
        date added are preserved either way.
        """
        item = await self.get_item(item_id)
        parsed = self._parser.parse(item.original_filename or PurePath(item.file_path).name)
        resolution = await self._resolver.resolve_detailed(parsed)
        if not resolution.matched:
            logger.info("No metadata found when refreshing %s", item.file_path)
            return False

        info = FileInfo(
            path=item.file_path,
            name=item.original_filename or PurePath(item.file_path).name,
            size=item.file_size or 0,
            modified_time=item.last_modified or 0.0,
        )
        await self._db.upsert_item(build_upsert(info, parsed, resolution.result))
        await self._publish(LibraryItemEvent(action="refreshed", item_id=item_id))
        return True

    async def update_metadata(self, item_id: int, metadata: MetadataResult) -> MediaItemRow:
        """
        Manually override an item's metadata.

        Fields left empty in `metadata` keep their stored values. The file
        fields and the playback bookkeeping are never touched.
        """
        item = await self.get_item(item_id)
        stored = MetadataResult(
            title=item.title,
            year=item.year,
            external_id=item.external_id,
            tmdb_id=item.tmdb_id,
            poster_url=item.poster_url,
            backdrop_url=item.backdrop_url,
            genres=item.genres,
            rating=item.rating,
            synopsis=item.synopsis,
            runtime=item.runtime,
        )
        merged = metadata.merged_with(stored)
        await self._db.upsert_item(
            UpsertMediaItem(
                file_path=item.file_path,
                media_type=item.media_type,
                title=merged.title or item.title,
                file_size=item.file_size,
                year=merged.year,
                season=item.season,
                episode=item.episode,
                external_id=merged.external_id,
                tmdb_id=merged.tmdb_id,
                poster_url=merged.poster_url,
                backdrop_url=merged.backdrop_url,
                genres=merged.genres,
                rating=merged.rating,
                synopsis=merged.synopsis,
                runtime=merged.runtime,
                last_modified=item.last_modified,
                original_filename=item.original_filename,
            )
        )
        await self._publish(LibraryItemEvent(action="updated", item_id=item_id))
        return await self.get_item(item_id)

    async def remove_item(self, item_id: int) -> bool:
        """Remove an item from the catalog (the file itself is not touched)."""
        self._require_initialized()
        removed = await self._db.delete_item(item_id)
        if removed:
            await self._publish(LibraryItemEvent(action="removed", item_id=item_id))
        return removed

    async def clear_library(self) -> int:
        self._require_initialized()
        if self.is_scanning:
            raise MediaLibraryError("Cannot clear the library while a scan is running.")
        removed = await self._db.clear()
        logger.info("Library cleared (%d items)", removed)
        await self._publish(LibraryItemEvent(action="cleared"))
        return removed

    async def record_playback(self, item_id: int) -> MediaItemRow:
        self._require_initialized()
        if not await self._db.record_playback(item_id):
            raise NotFoundError(f"Library item {item_id} not found")
        await self._publish(LibraryItemEvent(action="played", item_id=item_id))
        return await self.get_item(item_id)

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise MediaLibraryNotReadyError(
                "MediaLibrary is not initialized. Call await MediaLibrary.initialize() first."
            )
