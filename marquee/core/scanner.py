"""
Library scanner: walk root folders, identify media files, resolve metadata and
write the results into the catalog.

One scan run is a sequential pipeline in file-enumeration order, except for
metadata resolution, which runs for a bounded window of files at a time.
Upserts and progress events still happen strictly in enumeration order, so the
progress counter only ever goes up and tests are deterministic.

The progress channel is `LibraryScanner.iter_scan()`, an async generator of
`ScanProgressEvent`s followed by one `ScanFinishedEvent`. `scan()` is the
callback-style convenience wrapper on top of it.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Union

from marquee.core import CoreError, StoreWriteError
from marquee.core.db.models import UpsertMediaItem
from marquee.core.filename_parser import FilenameParser, ParsedFilename
from marquee.core.library_db import LibraryDb
from marquee.core.metadata.base import NO_MATCH, MetadataResult
from marquee.core.metadata.resolver import MetadataResolver, Resolution

logger = logging.getLogger(__name__)


DEFAULT_VIDEO_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".mp4",
        ".mkv",
        ".avi",
        ".mov",
        ".wmv",
        ".flv",
        ".webm",
        ".m4v",
        ".mpg",
        ".mpeg",
        ".3gp",
        ".ogv",
        ".ts",
        ".m2ts",
    }
)


@dataclass(frozen=True, slots=True)
class ScanSettings:
    """Knobs for a scan run (see `[scan]` in the config)."""

    extensions: frozenset[str] = DEFAULT_VIDEO_EXTENSIONS
    follow_symlinks: bool = False
    max_concurrency: int = 4
    prune_missing: bool = True


class ScanState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class FileInfo:
    """One file produced by directory traversal."""

    path: str
    name: str
    size: int
    modified_time: float


@dataclass(slots=True)
class ScanResults:
    """
    Aggregate outcome of one scan run.

    `found` counts candidate media files (movie/tvshow), `matched` those that got
    non-empty metadata. `errors` holds `{"file": ..., "error": ...}` or
    `{"folder": ..., "error": ...}` entries.
    """

    found: int = 0
    matched: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)
    removed: int = 0
    lookup_failures: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "found": self.found,
            "matched": self.matched,
            "errors": list(self.errors),
            "removed": self.removed,
            "lookup_failures": self.lookup_failures,
        }


@dataclass(frozen=True, slots=True)
class ScanProgressEvent:
    files_found: int
    total_estimate: int
    current_file: str


@dataclass(frozen=True, slots=True)
class ScanFinishedEvent:
    state: ScanState
    results: ScanResults


ScanEvent = Union[ScanProgressEvent, ScanFinishedEvent]

ProgressCallback = Callable[[int, int, str], Union[None, Awaitable[None]]]


class ScanError(CoreError):
    """A scan run aborted because the catalog could not be written."""

    def __init__(self, message: str, results: ScanResults) -> None:
        super().__init__(message)
        self.results = results


def get_file_info(path: Path) -> FileInfo:
    """Stat a file. Synchronous; the scanner runs it in a thread."""
    st = path.stat()
    return FileInfo(path=str(path), name=path.name, size=st.st_size, modified_time=st.st_mtime)


@dataclass(slots=True)
class _Walk:
    """What one root's traversal produced."""

    paths: list[Path] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)
    # Entries that could not be read: nothing stored under them may be swept.
    unreadable: list[Path] = field(default_factory=list)


def _describe(e: BaseException) -> str:
    return f"{type(e).__name__}: {e}"


def _walk(root: Path, settings: ScanSettings) -> _Walk:
    if not root.exists():
        raise FileNotFoundError(f"No such folder: {root}")
    if not root.is_dir():
        raise NotADirectoryError(f"Not a folder: {root}")

    walk = _Walk()
    visited: set[Path] = set()
    stack = [root]
    while stack:
        folder = stack.pop()
        if settings.follow_symlinks:
            real = folder.resolve()
            if real in visited:
                continue
            visited.add(real)
        try:
            with os.scandir(folder) as it:
                entries = list(it)
        except OSError as e:
            if folder == root:
                raise
            walk.errors.append({"folder": str(folder), "error": _describe(e)})
            walk.unreadable.append(folder)
            logger.warning("Cannot read folder %s: %s", folder, _describe(e))
            continue

        for entry in entries:
            path = Path(entry.path)
            try:
                if entry.is_symlink() and not settings.follow_symlinks:
                    continue
                if entry.is_dir():
                    stack.append(path)
                    continue
                if not entry.is_file():
                    continue
            except OSError as e:
                walk.errors.append({"file": str(path), "error": _describe(e)})
                walk.unreadable.append(path)
                continue
            if path.suffix.lower() in settings.extensions:
                walk.paths.append(path)

    walk.paths.sort(key=lambda p: str(p))
    return walk


async def iter_media_files(
    root: Path, settings: ScanSettings = ScanSettings()
) -> AsyncIterator[Path]:
    """
    Asynchronously yield video file paths under `root`, sorted by path.

    The walk runs in a thread to avoid blocking the event loop on large trees.
    Raises `OSError` (FileNotFoundError, NotADirectoryError, PermissionError)
    when the root itself cannot be listed. Unreadable subfolders are skipped.
    """
    walk = await asyncio.to_thread(_walk, root, settings)
    for p in walk.paths:
        yield p


def build_upsert(
    info: FileInfo, parsed: ParsedFilename, metadata: MetadataResult = NO_MATCH
) -> UpsertMediaItem:
    """Combine what the file system, the filename and the lookup services know."""
    return UpsertMediaItem(
        file_path=info.path,
        media_type=parsed.type.value,
        title=metadata.title or parsed.title,
        file_size=info.size,
        year=metadata.year if metadata.year is not None else parsed.year,
        season=parsed.season,
        episode=parsed.episode,
        external_id=metadata.external_id,
        tmdb_id=metadata.tmdb_id,
        poster_url=metadata.poster_url,
        backdrop_url=metadata.backdrop_url,
        genres=metadata.genres,
        rating=metadata.rating,
        synopsis=metadata.synopsis,
        runtime=metadata.runtime,
        last_modified=info.modified_time,
        original_filename=info.name,
    )


@dataclass(slots=True)
class _Pending:
    """A file waiting for its turn to be written/reported, in enumeration order."""

    path: Path
    parsed: ParsedFilename
    task: asyncio.Task[tuple[FileInfo, Resolution]] | None


class LibraryScanner:
    """
    Usage:
        scanner = LibraryScanner(db=db, resolver=resolver)
        results = await scanner.scan(["/media/movies"], on_progress=print)

        # or, as a stream:
        async with aclosing(scanner.iter_scan(["/media/movies"])) as events:
            async for event in events:
                ...

    Only one run is active at a time; asking for another while scanning is a no-op.
    """

    def __init__(
        self,
        *,
        db: LibraryDb,
        resolver: MetadataResolver,
        parser: FilenameParser | None = None,
        settings: ScanSettings = ScanSettings(),
    ) -> None:
        self._db = db
        self._resolver = resolver
        self._parser = parser or FilenameParser()
        self._settings = settings
        self._state = ScanState.IDLE
        self._last_state: ScanState | None = None
        self._cancel_requested = False

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def last_state(self) -> ScanState | None:
        """Terminal state of the previous run (None before the first run)."""
        return self._last_state

    @property
    def is_scanning(self) -> bool:
        return self._state is ScanState.SCANNING

    def cancel_scan(self) -> bool:
        """
        Ask the running scan to stop at the next file boundary.

        Lookups already in flight finish and are still written. Returns False if
        no scan is running.
        """
        if not self.is_scanning:
            return False
        self._cancel_requested = True
        logger.info("Scan cancellation requested")
        return True

    async def scan(
        self, folders: Iterable[str | Path], on_progress: ProgressCallback | None = None
    ) -> ScanResults | None:
        """
        Run a scan to completion and return its results.

        `on_progress(files_found, total_estimate, current_file)` may be a plain or an
        async callable. Returns None without doing anything if a scan is already running.
        Raises `ScanError` if the catalog cannot be written.
        """
        if self.is_scanning:
            logger.warning("Scan already in progress; ignoring new request")
            return None

        results: ScanResults | None = None
        async with aclosing(self.iter_scan(folders)) as events:
            async for event in events:
                if isinstance(event, ScanFinishedEvent):
                    results = event.results
                elif on_progress is not None:
                    ret = on_progress(event.files_found, event.total_estimate, event.current_file)
                    if inspect.isawaitable(ret):
                        await ret
        return results

    async def iter_scan(self, folders: Iterable[str | Path]) -> AsyncIterator[ScanEvent]:
        """
        Scan `folders` and yield progress, then one `ScanFinishedEvent`.

        Closing the generator early (`aclose()`) cancels the run the same way
        `cancel_scan()` does. Yields nothing if a scan is already running.
        """
        if self.is_scanning:
            logger.warning("Scan already in progress; ignoring new request")
            return

        self._state = ScanState.SCANNING
        self._cancel_requested = False
        terminal = ScanState.FAILED

        roots = _unique_roots(folders)
        results = ScanResults()
        pending: deque[_Pending] = deque()
        marked: set[str] = set()
        enumerated_roots: list[Path] = []
        unreadable: list[Path] = []
        seen: set[Path] = set()
        total_estimate = 0
        window = max(1, self._settings.max_concurrency)
        finished = False

        logger.info("Scan started: %s", ", ".join(str(r) for r in roots))
        try:
            for root in roots:
                if self._cancel_requested:
                    break
                try:
                    walk = await asyncio.to_thread(_walk, root, self._settings)
                except OSError as e:
                    msg = _describe(e)
                    results.errors.append({"folder": str(root), "error": msg})
                    logger.warning("Cannot scan folder %s: %s", root, msg)
                    continue

                enumerated_roots.append(root)
                results.errors.extend(walk.errors)
                unreadable.extend(walk.unreadable)
                paths = [p for p in walk.paths if p not in seen]
                seen.update(paths)
                total_estimate += len(paths)

                for path in paths:
                    if self._cancel_requested:
                        break
                    parsed = self._parser.parse(path.name)
                    task = (
                        asyncio.create_task(self._process(path, parsed))
                        if parsed.is_candidate
                        else None
                    )
                    pending.append(_Pending(path, parsed, task))

                    while pending and (
                        pending[0].task is None
                        or pending[0].task.done()
                        or _in_flight(pending) >= window
                    ):
                        entry = pending.popleft()
                        await self._finalize(entry, results, marked)
                        yield ScanProgressEvent(results.found, total_estimate, entry.path.name)

            # Let lookups that already started finish; their results are kept.
            while pending:
                entry = pending.popleft()
                await self._finalize(entry, results, marked)
                yield ScanProgressEvent(results.found, total_estimate, entry.path.name)

            if self._cancel_requested:
                terminal = ScanState.CANCELLED
            else:
                if self._settings.prune_missing:
                    results.removed = await self._sweep(enumerated_roots, marked, unreadable)
                terminal = ScanState.COMPLETED

            logger.info(
                "Scan %s: %d found, %d matched, %d errors, %d removed",
                terminal.value,
                results.found,
                results.matched,
                len(results.errors),
                results.removed,
            )
            finished = True
            yield ScanFinishedEvent(terminal, results)

        except GeneratorExit:
            if finished:
                raise
            # Consumer went away: treat as cancellation, but keep in-flight work.
            terminal = ScanState.CANCELLED
            self._cancel_requested = True
            try:
                while pending:
                    await self._finalize(pending.popleft(), results, marked)
            except StoreWriteError as e:
                terminal = ScanState.FAILED
                logger.error("Catalog write failed while cancelling scan: %s", e)
            logger.info("Scan cancelled: %d found, %d matched", results.found, results.matched)
            raise
        except asyncio.CancelledError:
            terminal = ScanState.CANCELLED
            raise
        except StoreWriteError as e:
            terminal = ScanState.FAILED
            logger.error("Scan failed, catalog could not be written: %s", e)
            raise ScanError(
                f"Library scan failed: {e}. The library may be incomplete; "
                "it is safe to run the scan again.",
                results,
            ) from e
        finally:
            for entry in pending:
                if entry.task is not None:
                    entry.task.cancel()
            leftovers = [e.task for e in pending if e.task is not None]
            if leftovers:
                await asyncio.gather(*leftovers, return_exceptions=True)
            self._last_state = terminal
            self._state = ScanState.IDLE
            self._cancel_requested = False

    # ---- Pipeline steps ----

    async def _process(self, path: Path, parsed: ParsedFilename) -> tuple[FileInfo, Resolution]:
        info = await asyncio.to_thread(get_file_info, path)
        resolution = await self._resolver.resolve_detailed(parsed)
        return info, resolution

    async def _finalize(
        self, entry: _Pending, results: ScanResults, marked: set[str]
    ) -> None:
        """Write one file's outcome. Only `StoreWriteError` escapes."""
        if entry.task is None:
            logger.debug("Skipping non-media file %s", entry.path)
            return

        results.found += 1
        marked.add(str(entry.path))
        try:
            info, resolution = await entry.task
        except Exception as e:  # noqa: BLE001 - one bad file must not stop the scan
            msg = _describe(e)
            results.errors.append({"file": str(entry.path), "error": msg})
            logger.warning("Scan issue for %s: %s", entry.path, msg)
            return

        if resolution.failures:
            results.lookup_failures += 1

        await self._db.upsert_item(build_upsert(info, entry.parsed, resolution.result))
        if resolution.matched:
            results.matched += 1

    async def _sweep(self, roots: list[Path], marked: set[str], unreadable: list[Path]) -> int:
        """
        Drop stored items under enumerated roots that this run did not see.

        Items under an `unreadable` folder (or an unreadable entry itself) are
        kept: their files were not confirmed missing.
        """
        protected = [str(p) for p in unreadable]

        def is_protected(path: str) -> bool:
            return any(path == p or path.startswith(p + os.sep) for p in protected)

        stale: list[str] = []
        for root in roots:
            stale.extend(
                p
                for p in await self._db.list_paths_under(str(root))
                if p not in marked and not is_protected(p)
            )
        if not stale:
            return 0
        removed = await self._db.delete_items_by_paths(sorted(set(stale)))
        logger.info("Removed %d items whose files are gone", removed)
        return removed


def _unique_roots(folders: Iterable[str | Path]) -> list[Path]:
    roots: list[Path] = []
    for folder in folders:
        root = Path(folder).expanduser().resolve()
        if root not in roots:
            roots.append(root)
    return roots


def _in_flight(pending: deque[_Pending]) -> int:
    return sum(1 for entry in pending if entry.task is not None)
