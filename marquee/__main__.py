"""
Marquee - Entry Point

Run with: python -m marquee [scan FOLDER... | list | serve]
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from marquee import __version__
from marquee.config import ConfigError, load_config
from marquee.core.db.models import DEFAULT_LIMIT
from marquee.core.library import MediaLibraryError
from marquee.core.scanner import ScanError
from marquee.server import MarqueeServer

logger = logging.getLogger("marquee")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from third-party libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="marquee",
        description="Marquee - a local movie and TV library server",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="TOML config file layered over the built-in defaults",
    )

    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Library database file (overrides [library] database)",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    commands = parser.add_subparsers(dest="command")

    scan = commands.add_parser("scan", help="Scan folders into the library")
    scan.add_argument(
        "folders",
        nargs="*",
        help="Folders to scan (default: [library] folders from the config)",
    )

    list_cmd = commands.add_parser("list", help="List library items")
    list_cmd.add_argument("--type", default=None, help="movie, tvshow or other")
    list_cmd.add_argument("--genre", default=None)
    list_cmd.add_argument("--search", default=None, help="Case-insensitive title search")
    list_cmd.add_argument(
        "--sort",
        default=None,
        help="date_added, title, year, rating, last_played or play_count",
    )
    list_cmd.add_argument("--limit", type=int, default=DEFAULT_LIMIT)
    list_cmd.add_argument("--offset", type=int, default=0)

    serve = commands.add_parser("serve", help="Run the web server (default)")
    serve.add_argument("--host", default=None, help="Override [web] host")
    serve.add_argument("--port", type=int, default=None, help="Override [web] port")

    return parser.parse_args(argv)


def _format_item(item: dict) -> str:
    line = f"{item['id']:>5}  {item['type']:<6}  {item['title']}"
    if item.get("year"):
        line += f" ({item['year']})"
    if item.get("season") is not None and item.get("episode") is not None:
        line += f" S{item['season']:02d}E{item['episode']:02d}"
    return line


async def run_scan(server: MarqueeServer, folders: list[str]) -> int:
    """Scan `folders` (or the configured ones) and print a summary."""
    await server.open()
    try:

        def on_progress(found: int, total: int, current: str) -> None:
            logger.debug("[%d/%d] %s", found, total, current)

        try:
            results = await server.media_library.scan(folders or None, on_progress)
        except ScanError as e:
            logger.error("%s", e)
            return 1

        if results is None:
            return 1
        for error in results.errors:
            logger.warning("Skipped %s: %s", error.get("file") or error.get("folder"), error["error"])
        print(server.media_library.scan_status.message)
        return 0
    finally:
        await server.close()


async def run_list(server: MarqueeServer, args: argparse.Namespace) -> int:
    """Print one page of the catalog."""
    await server.open()
    try:
        filters = {
            "type": args.type,
            "genre": args.genre,
            "search": args.search,
            "sorter": args.sort,
            "limit": args.limit,
            "offset": args.offset,
        }
        items = await server.media_library.fetch(filters)
        total = await server.media_library.count(filters)
        for item in items:
            print(_format_item(item))
        print(f"{len(items)} of {total} items")
        return 0
    finally:
        await server.close()


async def run_server(server: MarqueeServer) -> int:
    """Start and run the Marquee server."""
    await server.run()
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the application."""
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error("%s", e)
        return 2

    command = args.command or "serve"
    if command == "serve":
        if getattr(args, "host", None):
            config.web.host = args.host
        if getattr(args, "port", None):
            config.web.port = args.port

    server = MarqueeServer(config, db_path=args.db)

    try:
        if command == "scan":
            return asyncio.run(run_scan(server, args.folders))
        if command == "list":
            return asyncio.run(run_list(server, args))
        logger.info("Starting Marquee...")
        return asyncio.run(run_server(server))
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
    except (MediaLibraryError, ValueError) as e:
        logger.error("%s", e)
        return 2
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
