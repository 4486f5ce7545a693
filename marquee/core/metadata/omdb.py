"""
OMDb (omdbapi.com) provider: ratings/plot enrichment.

OMDb answers with HTTP 200 even for misses (`"Response": "False"`) and uses the
string "N/A" for unknown fields. The free tier is limited per day, so requests
are counted and refused locally once the limit is reached.
"""

from __future__ import annotations

import datetime as _dt
import logging
import re
from typing import Any, Callable

import httpx

from marquee.core.filename_parser import MediaType
from marquee.core.metadata.base import (
    NO_MATCH,
    HttpMetadataProvider,
    MetadataResult,
    ProviderError,
)
from marquee.core.metadata.cache import TtlCache

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://www.omdbapi.com"
DEFAULT_DAILY_LIMIT = 1000

_RUNTIME = re.compile(r"(\d+)")


def _value(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    value = str(value).strip()
    if not value or value == "N/A":
        return None
    return value


class OmdbProvider(HttpMetadataProvider):
    name = "omdb"

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        api_key: str | None,
        base_url: str = DEFAULT_BASE_URL,
        daily_limit: int = DEFAULT_DAILY_LIMIT,
        timeout: float = 8.0,
        cache: TtlCache[str, Any] | None = None,
        today: Callable[[], _dt.date] = _dt.date.today,
    ) -> None:
        super().__init__(
            client=client,
            base_url=base_url,
            timeout=timeout,
            cache=cache if cache is not None else TtlCache(max_size=50, ttl=86400.0),
        )
        self._api_key = api_key or None
        self._daily_limit = daily_limit
        self._today = today
        self._day = today()
        self._requests_today = 0

    @property
    def is_configured(self) -> bool:
        return self._api_key is not None

    @property
    def requests_today(self) -> int:
        return self._requests_today

    def _auth_params(self) -> dict[str, Any]:
        return {"apikey": self._api_key}

    def _before_request(self) -> None:
        today = self._today()
        if today != self._day:
            self._day = today
            self._requests_today = 0
        if self._requests_today >= self._daily_limit:
            raise ProviderError(f"daily request limit reached ({self._daily_limit})")
        self._requests_today += 1

    async def _lookup_by_title_year(
        self, title: str, year: int | None, media_type: MediaType
    ) -> MetadataResult:
        data = await self._get_json(
            "/",
            {
                "t": title,
                "y": year,
                "type": "series" if media_type is MediaType.TVSHOW else "movie",
                "plot": "short",
            },
        )
        return self._parse(data)

    async def _lookup_by_id(self, external_id: str) -> MetadataResult:
        data = await self._get_json("/", {"i": external_id.strip(), "plot": "short"})
        return self._parse(data)

    @staticmethod
    def _parse(data: dict[str, Any] | None) -> MetadataResult:
        if not data or data.get("Response") == "False":
            if data and data.get("Error"):
                logger.debug("omdb: %s", data["Error"])
            return NO_MATCH

        year_raw = _value(data, "Year")
        year = int(year_raw[:4]) if year_raw and year_raw[:4].isdigit() else None

        rating_raw = _value(data, "imdbRating")
        try:
            rating = float(rating_raw) if rating_raw else None
        except ValueError:
            rating = None

        runtime_raw = _value(data, "Runtime")
        runtime_match = _RUNTIME.search(runtime_raw) if runtime_raw else None

        genres_raw = _value(data, "Genre")
        genres = tuple(g.strip() for g in genres_raw.split(",") if g.strip()) if genres_raw else ()

        return MetadataResult(
            title=_value(data, "Title"),
            year=year,
            external_id=_value(data, "imdbID"),
            poster_url=_value(data, "Poster"),
            genres=genres,
            rating=rating,
            synopsis=_value(data, "Plot"),
            runtime=int(runtime_match.group(1)) if runtime_match else None,
        )
