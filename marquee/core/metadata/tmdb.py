"""
TMDB (themoviedb.org) provider: the primary catalog service.

Search endpoints are used to find a candidate by title/year, then the details
endpoint is fetched with `append_to_response=external_ids` so the IMDb id comes
back in the same request.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from marquee.core.filename_parser import MediaType
from marquee.core.metadata.base import NO_MATCH, HttpMetadataProvider, MetadataResult
from marquee.core.metadata.cache import TtlCache
from marquee.core.metadata.matching import Candidate, best_match

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.themoviedb.org/3"
DEFAULT_IMAGE_BASE_URL = "https://image.tmdb.org/t/p"
POSTER_SIZE = "w500"
BACKDROP_SIZE = "w1280"


def _year_of(date: str | None) -> int | None:
    if not date or len(date) < 4 or not date[:4].isdigit():
        return None
    return int(date[:4])


class TmdbProvider(HttpMetadataProvider):
    name = "tmdb"

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        api_key: str | None,
        base_url: str = DEFAULT_BASE_URL,
        image_base_url: str = DEFAULT_IMAGE_BASE_URL,
        language: str = "en-US",
        timeout: float = 8.0,
        cache: TtlCache[str, Any] | None = None,
    ) -> None:
        super().__init__(
            client=client,
            base_url=base_url,
            timeout=timeout,
            cache=cache if cache is not None else TtlCache(max_size=100, ttl=3600.0),
        )
        self._api_key = api_key or None
        self._image_base_url = image_base_url.rstrip("/")
        self._language = language

    @property
    def is_configured(self) -> bool:
        return self._api_key is not None

    def _auth_params(self) -> dict[str, Any]:
        return {"api_key": self._api_key}

    def image_url(self, path: str | None, size: str) -> str | None:
        if not path:
            return None
        return f"{self._image_base_url}/{size}{path}"

    # ---- Lookups ----

    async def _lookup_by_title_year(
        self, title: str, year: int | None, media_type: MediaType
    ) -> MetadataResult:
        kind = "tv" if media_type is MediaType.TVSHOW else "movie"
        params: dict[str, Any] = {
            "query": title,
            "language": self._language,
            "include_adult": "false",
        }
        if year is not None:
            params["first_air_date_year" if kind == "tv" else "year"] = year

        data = await self._get_json(f"/search/{kind}", params)
        hits = (data or {}).get("results") or []
        if not hits and year is not None:
            # The year in a filename is sometimes off; retry without it.
            params.pop("first_air_date_year" if kind == "tv" else "year")
            data = await self._get_json(f"/search/{kind}", params)
            hits = (data or {}).get("results") or []

        candidates = [self._candidate(kind, hit) for hit in hits if hit.get("id")]
        match = best_match(title, year, candidates)
        if match is None:
            logger.debug("tmdb: no acceptable match for %r (%s)", title, year)
            return NO_MATCH

        return await self._details(kind, int(match.payload["id"]))

    async def _lookup_by_id(self, external_id: str) -> MetadataResult:
        external_id = external_id.strip()
        if external_id.isdigit():
            return await self._details("movie", int(external_id))

        if not external_id.startswith("tt"):
            raise ValueError(f"unsupported id: {external_id!r}")

        data = await self._get_json(f"/find/{external_id}", {"external_source": "imdb_id"})
        if not data:
            return NO_MATCH
        for kind, key in (("movie", "movie_results"), ("tv", "tv_results")):
            results = data.get(key) or []
            if results:
                return await self._details(kind, int(results[0]["id"]))
        return NO_MATCH

    async def _details(self, kind: str, tmdb_id: int) -> MetadataResult:
        data = await self._get_json(
            f"/{kind}/{tmdb_id}",
            {"language": self._language, "append_to_response": "external_ids"},
        )
        if not data:
            return NO_MATCH
        return self._parse_details(kind, data)

    # ---- Parsing ----

    @staticmethod
    def _candidate(kind: str, hit: dict[str, Any]) -> Candidate[dict[str, Any]]:
        if kind == "tv":
            return Candidate(
                title=hit.get("name") or "",
                year=_year_of(hit.get("first_air_date")),
                payload=hit,
                alt_title=hit.get("original_name"),
            )
        return Candidate(
            title=hit.get("title") or "",
            year=_year_of(hit.get("release_date")),
            payload=hit,
            alt_title=hit.get("original_title"),
        )

    def _parse_details(self, kind: str, data: dict[str, Any]) -> MetadataResult:
        if kind == "tv":
            title = data.get("name")
            year = _year_of(data.get("first_air_date"))
            run_times = data.get("episode_run_time") or []
            runtime = run_times[0] if run_times else None
        else:
            title = data.get("title")
            year = _year_of(data.get("release_date"))
            runtime = data.get("runtime")

        imdb_id = data.get("imdb_id") or (data.get("external_ids") or {}).get("imdb_id")
        rating = data.get("vote_average")

        return MetadataResult(
            title=title or None,
            year=year,
            external_id=imdb_id or None,
            tmdb_id=data.get("id"),
            poster_url=self.image_url(data.get("poster_path"), POSTER_SIZE),
            backdrop_url=self.image_url(data.get("backdrop_path"), BACKDROP_SIZE),
            genres=tuple(g["name"] for g in data.get("genres") or [] if g.get("name")),
            # TMDB reports 0 for unrated titles.
            rating=float(rating) if rating else None,
            synopsis=data.get("overview") or None,
            runtime=int(runtime) if runtime else None,
        )
