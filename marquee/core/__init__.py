"""
Core domain package.

This package contains the indexing pipeline (filename parsing, metadata resolution,
scanning, persistence and the read-side collection). It should stay independent of
any UI layer (web, CLI, etc.).

We intentionally keep exports minimal; consumers should usually import from the
specific module they need (e.g. `marquee.core.scanner`).
"""

from __future__ import annotations

__all__: list[str] = [
    "CoreError",
    "NotFoundError",
    "StoreWriteError",
]


class CoreError(Exception):
    """Base class for core-layer exceptions."""


class NotFoundError(CoreError):
    """Raised when a library item cannot be found."""


class StoreWriteError(CoreError):
    """Raised when the persisted catalog cannot be written."""
