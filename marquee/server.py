"""
Marquee Server - Main Server Module

This module contains the main MarqueeServer class that wires all components
together from a `MarqueeConfig` and manages the application lifecycle.
"""

import asyncio
import logging
import signal
from pathlib import Path

import httpx

from marquee.config import MarqueeConfig
from marquee.core.events import EventBus
from marquee.core.filename_parser import FilenameParser
from marquee.core.library import MediaLibrary
from marquee.core.library_db import LibraryDb
from marquee.core.metadata import MetadataResolver, OmdbProvider, TmdbProvider, TtlCache
from marquee.core.scanner import LibraryScanner, ScanSettings
from marquee.web.server import WebServer

logger = logging.getLogger(__name__)


class MarqueeServer:
    """
    Main Marquee server that coordinates all components.

    The server manages:
    - One shared httpx client for the metadata providers (TMDB, OMDb)
    - The SQLite catalog (`LibraryDb`)
    - The scanner and the `MediaLibrary` facade
    - The web server for the REST API

    Components can also be used without the web server (see the `scan` and
    `list` CLI commands): call `open()`/`close()` instead of `start()`/`stop()`.
    """

    def __init__(self, config: MarqueeConfig, *, db_path: Path | str | None = None) -> None:
        """
        Initialize the Marquee server.

        Args:
            config: Loaded configuration.
            db_path: Optional override for `config.library.database`.
        """
        self.config = config

        self.http_client = httpx.AsyncClient(
            timeout=config.metadata.timeout,
            headers={"User-Agent": "Marquee/0.1"},
            follow_redirects=True,
        )

        tmdb = config.metadata.tmdb
        omdb = config.metadata.omdb
        providers = [
            TmdbProvider(
                client=self.http_client,
                api_key=tmdb.api_key,
                base_url=tmdb.base_url,
                image_base_url=tmdb.image_base_url,
                language=tmdb.language,
                cache=TtlCache(max_size=tmdb.cache_size, ttl=tmdb.cache_ttl),
            ),
            OmdbProvider(
                client=self.http_client,
                api_key=omdb.api_key,
                base_url=omdb.base_url,
                daily_limit=omdb.daily_limit,
                cache=TtlCache(max_size=omdb.cache_size, ttl=omdb.cache_ttl),
            ),
        ]
        self.resolver = MetadataResolver(providers, timeout=config.metadata.timeout)
        if not any(p.is_configured for p in providers):
            logger.warning(
                "No metadata provider has an API key; items will be cataloged from filenames only"
            )

        self.library_db = LibraryDb(db_path=str(db_path or config.library.database))
        self.parser = FilenameParser()
        self.scanner = LibraryScanner(
            db=self.library_db,
            resolver=self.resolver,
            parser=self.parser,
            settings=ScanSettings(
                extensions=frozenset(config.scan.extensions),
                follow_symlinks=config.scan.follow_symlinks,
                max_concurrency=config.scan.max_concurrency,
                prune_missing=config.scan.prune_missing,
            ),
        )
        self.event_bus = EventBus()
        self.media_library = MediaLibrary(
            db=self.library_db,
            scanner=self.scanner,
            resolver=self.resolver,
            parser=self.parser,
            event_bus=self.event_bus,
            default_folders=config.library.folders,
        )

        # Web server (created on start)
        self.web_server: WebServer | None = None

        # Server state
        self._running = False
        self._shutdown_event: asyncio.Event | None = None

    async def open(self) -> None:
        """Open the catalog and initialize the library (no web server)."""
        await self.library_db.open()
        await self.media_library.initialize()

    async def close(self) -> None:
        """Release the catalog and the HTTP client."""
        await self.library_db.close()
        await self.http_client.aclose()

    async def start(self) -> None:
        """Start all server components."""
        logger.info("Starting Marquee server")

        self._running = True
        self._shutdown_event = asyncio.Event()

        await self.open()

        self.web_server = WebServer(media_library=self.media_library)
        await self.web_server.start(host=self.config.web.host, port=self.config.web.port)

        logger.info("Marquee server started successfully")

    async def stop(self) -> None:
        """Stop all server components gracefully."""
        if not self._running:
            return

        logger.info("Stopping Marquee server...")
        self._running = False

        # Stop Web server first so no new scans are accepted
        if self.web_server:
            await self.web_server.stop()

        if self.media_library.cancel_scan():
            logger.info("Waiting for the running scan to stop")
            await self.media_library.wait_for_scan()

        # Close library DB last, after all components are stopped.
        await self.close()

        if self._shutdown_event:
            self._shutdown_event.set()

        logger.info("Marquee server stopped")

    async def run(self) -> None:
        """
        Run the server until shutdown is requested.

        This method starts all components and waits for a shutdown signal
        (SIGINT or SIGTERM).
        """
        await self.start()

        loop = asyncio.get_running_loop()

        def handle_signal() -> None:
            logger.info("Received shutdown signal")
            if self._shutdown_event:
                self._shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, handle_signal)
            except NotImplementedError:
                # Signal handlers not supported on Windows
                pass

        if self._shutdown_event:
            await self._shutdown_event.wait()

        await self.stop()

    @property
    def is_running(self) -> bool:
        """Check if the server is currently running."""
        return self._running
