"""
Event Bus for Marquee.

This module provides a simple pub/sub event system for decoupled communication
between components. The primary use case is telling the web layer (and anything
else listening) how a library scan is going.

Event types:
- library.scan: Library scan lifecycle (started/progress/completed/cancelled/failed)
- library.item: A catalog item changed outside a scan (refreshed/removed/played/cleared)

Usage:
    bus = EventBus()

    async def on_scan(event: LibraryScanEvent) -> None:
        print(f"{event.status}: {event.scanned}/{event.total}")

    await bus.subscribe("library.scan", on_scan)
    await bus.publish(LibraryScanEvent(status="started"))

The bus is constructed by whoever owns the components (see `MarqueeServer`) and
injected; there is no module-level instance.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)

# Type alias for event handlers
EventHandler = Callable[["Event"], Coroutine[Any, Any, None]]


@dataclass
class Event:
    """Base class for all events."""

    event_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary for JSON serialization."""
        return {"type": self.event_type}


@dataclass
class LibraryScanEvent(Event):
    """Fired during library scanning."""

    event_type: str = field(default="library.scan", init=False)
    status: str = ""  # started, progress, completed, cancelled, failed
    scanned: int = 0  # candidate files found so far
    total: int = 0  # files enumerated so far (estimate until enumeration is done)
    current_path: str = ""
    matched: int = 0
    errors: int = 0
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "type": self.event_type,
            "status": self.status,
            "scanned": self.scanned,
            "total": self.total,
        }
        if self.current_path:
            result["current_path"] = self.current_path
        if self.status in ("completed", "cancelled", "failed"):
            result["matched"] = self.matched
            result["errors"] = self.errors
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class LibraryItemEvent(Event):
    """Fired when a catalog item is changed outside a scan."""

    event_type: str = field(default="library.item", init=False)
    action: str = ""  # refreshed, updated, removed, played, cleared
    item_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.event_type, "action": self.action}
        if self.item_id is not None:
            result["item_id"] = self.item_id
        return result


class EventBus:
    """
    Simple async pub/sub event bus.

    Supports:
    - Multiple handlers per event type
    - Wildcard subscriptions (e.g., "library.*")
    - Async handlers
    - Error isolation (one handler failing doesn't affect others)
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Event type to subscribe to. Use "*" suffix for wildcards.
            handler: Async function to call when event is published.
        """
        async with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            logger.debug("Subscribed to %s: %s", event_type, handler)

    async def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        """
        Unsubscribe a handler from an event type.

        Returns True if handler was found and removed.
        """
        async with self._lock:
            handlers = self._handlers.get(event_type)
            if handlers and handler in handlers:
                handlers.remove(handler)
                logger.debug("Unsubscribed from %s: %s", event_type, handler)
                return True
            return False

    async def publish(self, event: Event) -> int:
        """
        Publish an event to all subscribed handlers.

        Returns:
            Number of handlers that received the event.
        """
        event_type = event.event_type
        handlers_called = 0

        async with self._lock:
            matching_handlers: list[EventHandler] = list(self._handlers.get(event_type, ()))

            # Wildcard matches (e.g., "library.*" matches "library.scan")
            for pattern, handlers in self._handlers.items():
                if pattern.endswith(".*"):
                    if event_type.startswith(pattern[:-2] + "."):
                        matching_handlers.extend(handlers)
                elif pattern == "*":
                    matching_handlers.extend(handlers)

        # Call handlers outside of lock
        for handler in matching_handlers:
            try:
                await handler(event)
                handlers_called += 1
            except Exception as e:
                logger.exception("Error in event handler for %s: %s", event_type, e)

        if handlers_called > 0:
            logger.debug("Published %s to %d handlers", event_type, handlers_called)

        return handlers_called

    async def clear(self) -> None:
        """Remove all subscriptions."""
        async with self._lock:
            self._handlers.clear()
            logger.debug("Cleared all event subscriptions")
