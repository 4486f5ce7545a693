"""
Marquee - a local movie and TV library server.

Marquee scans folders of video files, works out what each file is from its
name, looks the title up on TMDB/OMDb, and keeps the result in a SQLite
catalog that the web UI can browse, filter and sort.
"""

__version__ = "0.1.0"
__author__ = "Marquee Contributors"

from marquee.server import MarqueeServer

__all__ = ["MarqueeServer", "__version__"]
