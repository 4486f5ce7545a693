"""
Tests for marquee.core.scanner.

These tests verify:
- Enumeration (extensions, sorting, bad roots)
- Scan results, stored items and ordered progress
- Re-scans (bookkeeping preserved, missing files swept)
- Cancellation, per-file errors and catalog write failures
"""

from __future__ import annotations

import os
from contextlib import aclosing
from pathlib import Path

import pytest

from marquee.core import StoreWriteError
from marquee.core.library_db import LibraryDb
from marquee.core.metadata import MetadataResolver
from marquee.core.scanner import (
    FileInfo,
    LibraryScanner,
    ScanError,
    ScanFinishedEvent,
    ScanProgressEvent,
    ScanSettings,
    ScanState,
    iter_media_files,
)


@pytest.fixture
def scanner(db: LibraryDb, resolver: MetadataResolver) -> LibraryScanner:
    return LibraryScanner(db=db, resolver=resolver)


# =============================================================================
# Enumeration
# =============================================================================


class TestEnumeration:
    """Tests for walking a root folder."""

    async def test_filters_and_sorts(self, media_root: Path) -> None:
        names = [p.name async for p in iter_media_files(media_root)]

        assert names == [
            "Breaking.Bad.S01E01.mkv",
            "Inception.2010.mkv",
            "The.Matrix.1999.1080p.mkv",
            "holiday.mp4",
        ]

    async def test_custom_extensions(self, media_root: Path) -> None:
        settings = ScanSettings(extensions=frozenset({".mp4"}))

        names = [p.name async for p in iter_media_files(media_root, settings)]

        assert names == ["holiday.mp4"]

    async def test_missing_root(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            async for _ in iter_media_files(tmp_path / "nope"):
                pass

    async def test_file_as_root(self, media_root: Path) -> None:
        with pytest.raises(NotADirectoryError):
            async for _ in iter_media_files(media_root / "notes.txt"):
                pass


# =============================================================================
# Scanning
# =============================================================================


class TestScan:
    """Tests for a full scan run."""

    async def test_results_and_items(
        self, scanner: LibraryScanner, db: LibraryDb, media_root: Path
    ) -> None:
        results = await scanner.scan([media_root])

        assert results is not None
        assert results.found == 3
        assert results.matched == 2
        assert results.errors == []
        assert await db.count() == 3
        assert scanner.state is ScanState.IDLE
        assert scanner.last_state is ScanState.COMPLETED

        matrix = await db.get_item_by_path(str(media_root / "The.Matrix.1999.1080p.mkv"))
        assert matrix is not None
        assert matrix.media_type == "movie"
        assert matrix.external_id == "tt0133093"
        assert matrix.genres == ("Action", "Science Fiction")
        assert matrix.file_size == 2048
        assert matrix.original_filename == "The.Matrix.1999.1080p.mkv"

        inception = await db.get_item_by_path(str(media_root / "Inception.2010.mkv"))
        assert inception.title == "Inception"
        assert inception.year == 2010
        assert inception.external_id is None

        episode = await db.get_item_by_path(str(media_root / "Breaking.Bad.S01E01.mkv"))
        assert episode.media_type == "tvshow"
        assert (episode.season, episode.episode) == (1, 1)

        assert await db.get_item_by_path(str(media_root / "holiday.mp4")) is None

    async def test_progress_is_ordered(self, scanner: LibraryScanner, media_root: Path) -> None:
        events: list[tuple[int, int, str]] = []

        await scanner.scan([media_root], on_progress=lambda *args: events.append(args))

        assert [name for _, _, name in events] == [
            "Breaking.Bad.S01E01.mkv",
            "Inception.2010.mkv",
            "The.Matrix.1999.1080p.mkv",
            "holiday.mp4",
        ]
        assert [found for found, _, _ in events] == [1, 2, 3, 3]
        assert all(total == 4 for _, total, _ in events)

    async def test_async_progress_callback(self, scanner: LibraryScanner, media_root: Path) -> None:
        seen: list[str] = []

        async def on_progress(found: int, total: int, current: str) -> None:
            seen.append(current)

        await scanner.scan([media_root], on_progress=on_progress)

        assert len(seen) == 4

    async def test_event_stream(self, scanner: LibraryScanner, media_root: Path) -> None:
        async with aclosing(scanner.iter_scan([media_root])) as stream:
            events = [event async for event in stream]

        assert all(isinstance(e, ScanProgressEvent) for e in events[:-1])
        assert isinstance(events[-1], ScanFinishedEvent)
        assert events[-1].state is ScanState.COMPLETED

    async def test_duplicate_roots_are_scanned_once(
        self, scanner: LibraryScanner, media_root: Path
    ) -> None:
        results = await scanner.scan([media_root, str(media_root), media_root / "."])

        assert results.found == 3

    async def test_bad_folder_is_reported(
        self, scanner: LibraryScanner, media_root: Path, tmp_path: Path
    ) -> None:
        missing = tmp_path / "missing"

        results = await scanner.scan([missing, media_root])

        assert results.found == 3
        assert len(results.errors) == 1
        assert results.errors[0]["folder"] == str(missing.resolve())
        assert "FileNotFoundError" in results.errors[0]["error"]
        assert scanner.last_state is ScanState.COMPLETED

    async def test_empty_folder(self, scanner: LibraryScanner, tmp_path: Path) -> None:
        results = await scanner.scan([tmp_path])

        assert results.found == 0
        assert results.matched == 0


# =============================================================================
# Re-scans
# =============================================================================


class TestRescan:
    """Tests for scanning the same folder again."""

    async def test_rescan_keeps_bookkeeping(
        self, scanner: LibraryScanner, db: LibraryDb, media_root: Path
    ) -> None:
        await scanner.scan([media_root])
        path = str(media_root / "The.Matrix.1999.1080p.mkv")
        item = await db.get_item_by_path(path)
        await db.record_playback(item.id)

        await scanner.scan([media_root])

        again = await db.get_item_by_path(path)
        assert again.id == item.id
        assert again.play_count == 1
        assert again.date_added == item.date_added
        assert await db.count() == 3

    async def test_missing_files_are_swept(
        self, scanner: LibraryScanner, db: LibraryDb, media_root: Path
    ) -> None:
        await scanner.scan([media_root])
        (media_root / "Inception.2010.mkv").unlink()

        results = await scanner.scan([media_root])

        assert results.removed == 1
        assert await db.count() == 2
        assert await db.get_item_by_path(str(media_root / "Inception.2010.mkv")) is None

    async def test_sweep_can_be_disabled(
        self, db: LibraryDb, resolver: MetadataResolver, media_root: Path
    ) -> None:
        scanner = LibraryScanner(db=db, resolver=resolver, settings=ScanSettings(prune_missing=False))
        await scanner.scan([media_root])
        (media_root / "Inception.2010.mkv").unlink()

        results = await scanner.scan([media_root])

        assert results.removed == 0
        assert await db.count() == 3

    async def test_unreadable_subfolder_is_reported_and_kept(
        self,
        scanner: LibraryScanner,
        db: LibraryDb,
        media_root: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        (media_root / "sub").mkdir()
        (media_root / "sub" / "Heat.1995.mkv").write_bytes(b"x")
        heat = str(media_root / "sub" / "Heat.1995.mkv")
        await scanner.scan([media_root])
        assert await db.get_item_by_path(heat) is not None

        real_scandir = os.scandir

        def flaky_scandir(path):
            if Path(path).name == "sub":
                raise PermissionError("permission denied")
            return real_scandir(path)

        monkeypatch.setattr(os, "scandir", flaky_scandir)

        results = await scanner.scan([media_root])

        assert results.found == 3
        assert results.removed == 0
        assert results.errors == [
            {"folder": str(media_root / "sub"), "error": "PermissionError: permission denied"}
        ]
        assert await db.get_item_by_path(heat) is not None
        assert scanner.last_state is ScanState.COMPLETED

    async def test_other_roots_are_not_swept(
        self, scanner: LibraryScanner, db: LibraryDb, media_root: Path, tmp_path: Path
    ) -> None:
        other = tmp_path / "other"
        other.mkdir()
        (other / "Heat.1995.mkv").write_bytes(b"x")
        await scanner.scan([media_root, other])

        await scanner.scan([media_root])

        assert await db.count() == 4


# =============================================================================
# Cancellation and Failures
# =============================================================================


class TestCancellationAndFailures:
    """Tests for stopping early and for errors during a run."""

    async def test_cancel_from_progress(
        self, db: LibraryDb, resolver: MetadataResolver, media_root: Path
    ) -> None:
        scanner = LibraryScanner(db=db, resolver=resolver, settings=ScanSettings(max_concurrency=1))
        def on_progress(found: int, total: int, current: str) -> None:
            assert scanner.cancel_scan() is True

        results = await scanner.scan([media_root], on_progress=on_progress)

        assert results.found == 1
        assert await db.count() == 1
        assert scanner.last_state is ScanState.CANCELLED
        assert scanner.is_scanning is False

    async def test_cancel_when_idle(self, scanner: LibraryScanner) -> None:
        assert scanner.cancel_scan() is False

    async def test_closing_the_stream_cancels(
        self, scanner: LibraryScanner, db: LibraryDb, media_root: Path
    ) -> None:
        async with aclosing(scanner.iter_scan([media_root])) as stream:
            async for _ in stream:
                break

        assert scanner.last_state is ScanState.CANCELLED
        assert scanner.state is ScanState.IDLE
        assert await db.count() >= 1

    async def test_second_scan_is_ignored(self, scanner: LibraryScanner, media_root: Path) -> None:
        nested: list[object] = []

        async def on_progress(found: int, total: int, current: str) -> None:
            if not nested:
                nested.append(await scanner.scan([media_root]))

        await scanner.scan([media_root], on_progress=on_progress)

        assert nested == [None]

    async def test_unreadable_file_is_skipped(
        self,
        scanner: LibraryScanner,
        db: LibraryDb,
        media_root: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        from marquee.core import scanner as scanner_module

        real = scanner_module.get_file_info

        def flaky(path: Path) -> FileInfo:
            if path.name.startswith("Inception"):
                raise PermissionError("permission denied")
            return real(path)

        monkeypatch.setattr(scanner_module, "get_file_info", flaky)

        results = await scanner.scan([media_root])

        assert results.found == 3
        assert len(results.errors) == 1
        assert results.errors[0]["file"].endswith("Inception.2010.mkv")
        assert "PermissionError" in results.errors[0]["error"]
        assert await db.count() == 2
        assert scanner.last_state is ScanState.COMPLETED

    async def test_write_failure_aborts(
        self,
        scanner: LibraryScanner,
        db: LibraryDb,
        media_root: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        async def broken_upsert(item) -> int:
            raise StoreWriteError("disk full")

        monkeypatch.setattr(db, "upsert_item", broken_upsert)

        with pytest.raises(ScanError) as excinfo:
            await scanner.scan([media_root])

        assert "safe to run the scan again" in str(excinfo.value)
        assert excinfo.value.results.found == 1
        assert scanner.last_state is ScanState.FAILED
        assert scanner.is_scanning is False
