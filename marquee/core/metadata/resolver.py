"""
MetadataResolver: compose providers into one best-effort lookup.

Providers are asked in preference order. The first one (the primary catalog)
decides the identity; every later one only fills fields that are still empty.
When the primary found an IMDb id, later providers are asked by id, which is
far more reliable than a second fuzzy title search.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from marquee.core.filename_parser import UNKNOWN_TITLE, MediaType, ParsedFilename
from marquee.core.metadata.base import (
    NO_MATCH,
    LookupOutcome,
    LookupStatus,
    MetadataProvider,
    MetadataResult,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Resolution:
    """Merged result plus one outcome per provider call (for observability)."""

    result: MetadataResult
    outcomes: tuple[LookupOutcome, ...] = ()

    @property
    def matched(self) -> bool:
        return not self.result.is_empty

    @property
    def failures(self) -> tuple[LookupOutcome, ...]:
        """Outcomes where the service timed out or was unavailable."""
        return tuple(o for o in self.outcomes if o.status.is_failure)


class MetadataResolver:
    """
    Usage:
        resolver = MetadataResolver([tmdb, omdb], timeout=8.0)
        result = await resolver.resolve(parse_filename("Heat.1995.mkv"))
        if result.is_empty:
            ...
    """

    def __init__(
        self, providers: Sequence[MetadataProvider] = (), *, timeout: float | None = None
    ) -> None:
        self._providers = list(providers)
        if timeout is not None:
            for provider in self._providers:
                provider.timeout = timeout

    @property
    def providers(self) -> list[MetadataProvider]:
        return list(self._providers)

    async def resolve(self, identity: ParsedFilename) -> MetadataResult:
        return (await self.resolve_detailed(identity)).result

    async def resolve_detailed(self, identity: ParsedFilename) -> Resolution:
        if not identity.is_candidate or identity.title == UNKNOWN_TITLE:
            return Resolution(NO_MATCH)

        result = NO_MATCH
        outcomes: list[LookupOutcome] = []

        for provider in self._providers:
            if not result.is_empty and result.external_id:
                outcome = await self._call(provider, provider.lookup_by_id(result.external_id))
            else:
                outcome = await self._call(
                    provider,
                    provider.lookup_by_title_year(identity.title, identity.year, identity.type),
                )
            outcomes.append(outcome)
            if outcome.status is LookupStatus.MATCHED:
                result = outcome.result if result.is_empty else result.merged_with(outcome.result)

        for outcome in outcomes:
            if outcome.status.is_failure:
                logger.info(
                    "Lookup %s for %r: %s (%s)",
                    outcome.status.value,
                    identity.title,
                    outcome.provider,
                    outcome.error,
                )
        if result.is_empty:
            logger.debug("No metadata for %r (%s)", identity.title, identity.year)

        return Resolution(result, tuple(outcomes))

    async def lookup_by_title_year(
        self,
        title: str,
        year: int | None = None,
        media_type: MediaType = MediaType.MOVIE,
    ) -> MetadataResult:
        """First non-empty result across providers, in preference order."""
        for provider in self._providers:
            outcome = await self._call(provider, provider.lookup_by_title_year(title, year, media_type))
            if outcome.status is LookupStatus.MATCHED:
                return outcome.result
        return NO_MATCH

    async def lookup_by_id(self, external_id: str) -> MetadataResult:
        for provider in self._providers:
            outcome = await self._call(provider, provider.lookup_by_id(external_id))
            if outcome.status is LookupStatus.MATCHED:
                return outcome.result
        return NO_MATCH

    @staticmethod
    async def _call(provider: MetadataProvider, call) -> LookupOutcome:
        # Providers already turn network trouble into outcomes; this only catches
        # bugs in a provider so one bad service cannot break a scan.
        try:
            return await call
        except Exception as e:  # noqa: BLE001
            logger.exception("Provider %s raised unexpectedly", provider.name)
            return LookupOutcome.unavailable(provider.name, f"{type(e).__name__}: {e}")
