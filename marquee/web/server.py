"""
Web Server Module for Marquee.

This module provides the WebServer class that creates and manages the
FastAPI application and registers all routes.

The WebServer integrates:
- REST API for the web UI (catalog, item maintenance, scan control)
- Health endpoint for supervisors and load balancers
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marquee import __version__
from marquee.core.library import MediaLibraryNotReadyError
from marquee.web.routes.api import register_api_routes

if TYPE_CHECKING:
    from marquee.core.library import MediaLibrary

logger = logging.getLogger(__name__)


class WebServer:
    """
    FastAPI-based web server for Marquee.

    Serves the REST API on top of one `MediaLibrary`. The uvicorn server runs
    as a background task on the caller's event loop.
    """

    def __init__(self, media_library: MediaLibrary) -> None:
        """
        Initialize the WebServer.

        Args:
            media_library: Library facade backing every endpoint
        """
        self.media_library = media_library

        # Create FastAPI app
        self.app = FastAPI(
            title="Marquee",
            description="Local movie and TV library server",
            version=__version__,
        )

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        # Server state
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._host = "127.0.0.1"
        self._port = 8765

        self._register_routes()

    def _register_routes(self) -> None:
        """Register all routes with the FastAPI app."""

        @self.app.get("/health")
        async def health_check() -> dict[str, str]:
            """Health check endpoint."""
            return {"status": "ok", "server": "marquee"}

        @self.app.exception_handler(MediaLibraryNotReadyError)
        async def library_not_ready(request: Request, exc: MediaLibraryNotReadyError) -> JSONResponse:
            return JSONResponse(status_code=503, content={"detail": str(exc)})

        register_api_routes(self.app, media_library=self.media_library)

    async def start(self, host: str = "127.0.0.1", port: int = 8765) -> None:
        """
        Start the web server.

        Args:
            host: Host address to bind to
            port: Port to listen on
        """
        self._host = host
        self._port = port

        config = uvicorn.Config(
            self.app,
            host=host,
            port=port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)

        # Start server in background
        self._serve_task = asyncio.create_task(self._server.serve())

        logger.info("Web server started on http://%s:%d", host, port)

    async def stop(self) -> None:
        """Stop the web server."""
        if self._server is not None:
            self._server.should_exit = True
            self._server = None

        if self._serve_task is not None:
            await self._serve_task
            self._serve_task = None

        logger.info("Web server stopped")

    @property
    def port(self) -> int:
        """Get the server port."""
        return self._port

    @property
    def host(self) -> str:
        """Get the server host."""
        return self._host
