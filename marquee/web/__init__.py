"""
Marquee Web Layer.

This package provides the HTTP/REST layer for Marquee, used by the web UI
and any other client that wants to browse the catalog or drive a scan.

Components:
- WebServer: FastAPI application with all routes
- routes.api: REST endpoints under /api
"""

from marquee.web.server import WebServer

__all__ = [
    "WebServer",
]
