"""
Internal DB subpackage for Marquee.

This package splits the storage layer into focused units (models,
schema/migrations, and query groups) while keeping `LibraryDb` as the single
public interface that the rest of the codebase imports.

Re-exports here are primarily for convenience inside the `core` package.
External code should import `LibraryDb` from `marquee.core.library_db`.
"""

from __future__ import annotations

# Models / DTOs
from .models import LibraryFilter, MediaItemRow, ScanHistoryRow, UpsertMediaItem

# Schema / migrations
from .schema import ensure_schema, migrate

__all__ = [
    # models
    "LibraryFilter",
    "MediaItemRow",
    "ScanHistoryRow",
    "UpsertMediaItem",
    # schema
    "ensure_schema",
    "migrate",
]
