"""
Metadata lookup: provider contract, concrete providers and the resolver.
"""

from marquee.core.metadata.base import (
    NO_MATCH,
    HttpMetadataProvider,
    LookupOutcome,
    LookupStatus,
    MetadataProvider,
    MetadataResult,
    ProviderError,
)
from marquee.core.metadata.cache import TtlCache
from marquee.core.metadata.omdb import OmdbProvider
from marquee.core.metadata.resolver import MetadataResolver, Resolution
from marquee.core.metadata.tmdb import TmdbProvider

__all__ = [
    "NO_MATCH",
    "HttpMetadataProvider",
    "LookupOutcome",
    "LookupStatus",
    "MetadataProvider",
    "MetadataResolver",
    "MetadataResult",
    "OmdbProvider",
    "ProviderError",
    "Resolution",
    "TmdbProvider",
    "TtlCache",
]
