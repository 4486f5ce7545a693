"""
Metadata provider contract and result types.

A provider wraps one external lookup service (TMDB, OMDb, ...). The contract is
deliberately small:

- `lookup_by_title_year(title, year, media_type)`
- `lookup_by_id(external_id)`
- `resolve(identity)`  (convenience built on the two above)

Providers never raise for network trouble. Every call returns a `LookupOutcome`
that says whether the service matched, missed, timed out or was unavailable, so
callers can tell "nothing found" from "service down" even though both end up as
`NO_MATCH` when persisted.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Awaitable

import httpx

from marquee.core.filename_parser import MediaType, ParsedFilename
from marquee.core.metadata.cache import TtlCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MetadataResult:
    """
    Best-effort metadata record for one title.

    `external_id` is the IMDb id (tt...) when known; `tmdb_id` is kept separately
    so a later refresh can go straight to the details endpoint.
    """

    title: str | None = None
    year: int | None = None
    external_id: str | None = None
    tmdb_id: int | None = None
    poster_url: str | None = None
    backdrop_url: str | None = None
    genres: tuple[str, ...] = ()
    rating: float | None = None
    synopsis: str | None = None
    runtime: int | None = None

    @property
    def is_empty(self) -> bool:
        return all(_is_blank(getattr(self, f.name)) for f in fields(self))

    def merged_with(self, other: MetadataResult) -> MetadataResult:
        """Return a copy where only fields still empty here are taken from `other`."""
        updates: dict[str, Any] = {}
        for f in fields(self):
            mine = getattr(self, f.name)
            theirs = getattr(other, f.name)
            if _is_blank(mine) and not _is_blank(theirs):
                updates[f.name] = theirs
        return replace(self, **updates) if updates else self

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "year": self.year,
            "external_id": self.external_id,
            "tmdb_id": self.tmdb_id,
            "poster_url": self.poster_url,
            "backdrop_url": self.backdrop_url,
            "genres": list(self.genres),
            "rating": self.rating,
            "synopsis": self.synopsis,
            "runtime": self.runtime,
        }


def _is_blank(value: Any) -> bool:
    return value is None or value == "" or value == ()


# Explicit "no match" sentinel. Compare with `is` or check `.is_empty`.
NO_MATCH = MetadataResult()


class LookupStatus(str, Enum):
    MATCHED = "matched"
    NO_MATCH = "no_match"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"

    @property
    def is_failure(self) -> bool:
        """Timeouts and unavailable services (as opposed to a clean miss)."""
        return self in (LookupStatus.TIMEOUT, LookupStatus.UNAVAILABLE)


@dataclass(frozen=True, slots=True)
class LookupOutcome:
    """What one provider call produced. `result` is `NO_MATCH` unless matched."""

    provider: str
    status: LookupStatus
    result: MetadataResult = NO_MATCH
    error: str | None = None

    @classmethod
    def matched(cls, provider: str, result: MetadataResult) -> LookupOutcome:
        if result.is_empty:
            return cls(provider=provider, status=LookupStatus.NO_MATCH)
        return cls(provider=provider, status=LookupStatus.MATCHED, result=result)

    @classmethod
    def miss(cls, provider: str) -> LookupOutcome:
        return cls(provider=provider, status=LookupStatus.NO_MATCH)

    @classmethod
    def unavailable(cls, provider: str, error: str) -> LookupOutcome:
        return cls(provider=provider, status=LookupStatus.UNAVAILABLE, error=error)

    @classmethod
    def timeout(cls, provider: str, error: str = "lookup timed out") -> LookupOutcome:
        return cls(provider=provider, status=LookupStatus.TIMEOUT, error=error)


class ProviderError(Exception):
    """Raised inside providers for service-level errors (bad status, limit reached)."""


class MetadataProvider(ABC):
    """
    One external lookup service.

    Subclasses implement `_lookup_by_title_year` / `_lookup_by_id` and may raise
    freely; the public methods turn every failure into a `LookupOutcome`.
    """

    name: str = "provider"

    def __init__(self, *, timeout: float = 8.0) -> None:
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        """False when the provider cannot be used at all (e.g. no API key)."""
        return True

    async def lookup_by_title_year(
        self,
        title: str,
        year: int | None = None,
        media_type: MediaType = MediaType.MOVIE,
    ) -> LookupOutcome:
        return await self._guard(self._lookup_by_title_year(title, year, media_type))

    async def lookup_by_id(self, external_id: str) -> LookupOutcome:
        return await self._guard(self._lookup_by_id(external_id))

    async def resolve(self, identity: ParsedFilename) -> LookupOutcome:
        """Look up a parsed identity by title/year."""
        return await self.lookup_by_title_year(identity.title, identity.year, identity.type)

    @abstractmethod
    async def _lookup_by_title_year(
        self, title: str, year: int | None, media_type: MediaType
    ) -> MetadataResult: ...

    @abstractmethod
    async def _lookup_by_id(self, external_id: str) -> MetadataResult: ...

    async def _guard(self, call: Awaitable[MetadataResult]) -> LookupOutcome:
        if not self.is_configured:
            # Close the coroutine we are not going to run.
            close = getattr(call, "close", None)
            if close is not None:
                close()
            return LookupOutcome.unavailable(self.name, "not configured")

        try:
            result = await asyncio.wait_for(call, timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.info("%s lookup timed out after %.1fs", self.name, self.timeout)
            return LookupOutcome.timeout(self.name)
        except (httpx.HTTPError, ProviderError) as e:
            logger.info("%s unavailable: %s", self.name, e)
            return LookupOutcome.unavailable(self.name, f"{type(e).__name__}: {e}")
        except ValueError as e:
            # Malformed JSON / unexpected payload shape.
            logger.warning("%s returned an unreadable response: %s", self.name, e)
            return LookupOutcome.unavailable(self.name, f"{type(e).__name__}: {e}")

        return LookupOutcome.matched(self.name, result)


class HttpMetadataProvider(MetadataProvider):
    """
    Base for providers that speak JSON over HTTP.

    The `httpx.AsyncClient` is injected and owned by the caller; responses are
    cached per (url, params) in a bounded TTL cache.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        base_url: str,
        timeout: float = 8.0,
        cache: TtlCache[str, Any] | None = None,
    ) -> None:
        super().__init__(timeout=timeout)
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._cache: TtlCache[str, Any] = cache if cache is not None else TtlCache()
        self.request_count = 0

    @property
    def cache(self) -> TtlCache[str, Any]:
        return self._cache

    def _auth_params(self) -> dict[str, Any]:
        """Credentials added to every request (not part of the cache key)."""
        return {}

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        query = {k: v for k, v in (params or {}).items() if v is not None}
        url = f"{self._base_url}{path}"
        cache_key = f"{url}?{sorted(query.items())}"

        cached = self._cache.get(cache_key)
        if cached is not None:
            logger.debug("%s cache hit: %s", self.name, path)
            return cached

        self._before_request()
        self.request_count += 1
        logger.debug("%s request: %s", self.name, path)

        response = await self._client.get(url, params={**self._auth_params(), **query})
        if response.status_code == 404:
            return None
        response.raise_for_status()
        data = response.json()

        self._cache.set(cache_key, data)
        return data

    def _before_request(self) -> None:
        """Hook for request accounting (e.g. daily limits). May raise `ProviderError`."""
